"""Manual ordering of a user's notes."""

import logging
from typing import List

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from tagnotes.models.db_models import DBNote
from tagnotes.models.schema import ReorderResult
from tagnotes.observability import metrics
from tagnotes.storage.base import Repository

logger = logging.getLogger(__name__)


class PositionSequencer(Repository):
    """Assigns and rewrites the per-user `position` column.

    Listing orders by position ascending, then newest first. New notes go
    in front of everything the user already has. A reorder rewrites the
    listed notes to 0..N-1 and leaves every other note of the user where it
    was, so unlisted notes can end up sharing a position with listed ones.
    """

    def assign_initial_position(self, session: Session, user_id: int) -> int:
        """Position for a note being created inside session's transaction.

        One indexed MIN() over the user's rows: min - 1, or 0 for a user
        without notes. Two concurrent creates may get the same value; the
        timestamp tie-break keeps the newest on top.
        """
        current_min = session.scalar(
            select(func.min(DBNote.position)).where(DBNote.user_id == user_id)
        )
        if current_min is None:
            return 0
        return current_min - 1

    def reorder(self, user_id: int, ordered_note_ids: List[int]) -> ReorderResult:
        """Set position = index for each id, as one atomic batch.

        Ids that are not owned by user_id (or were deleted concurrently)
        match no row and are reported in skipped_ids instead of failing the
        batch.

        Args:
            user_id: Owner whose notes are being ordered.
            ordered_note_ids: Note ids in the desired display order, without
                duplicates.

        Returns:
            ReorderResult with updated and skipped ids.
        """
        result = ReorderResult()
        if not ordered_note_ids:
            return result

        with self.transaction("reorder") as session:
            for index, note_id in enumerate(ordered_note_ids):
                outcome = session.execute(
                    update(DBNote)
                    .where(DBNote.id == note_id, DBNote.user_id == user_id)
                    .values(position=index)
                    .execution_options(synchronize_session=False)
                )
                if outcome.rowcount:
                    result.updated_ids.append(note_id)
                else:
                    result.skipped_ids.append(note_id)

        if result.skipped_ids:
            metrics.increment("reorder_skipped_ids", len(result.skipped_ids))
            logger.info(
                f"Reorder for user {user_id} skipped {len(result.skipped_ids)} "
                f"ids not owned by the user: {result.skipped_ids[:10]}"
            )
        return result
