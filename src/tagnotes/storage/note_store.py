"""Repository for the note aggregate: note row, hashtag rows, attachment rows."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import Select, delete, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from tagnotes.exceptions import AttachmentNotFoundError, NoteNotFoundError
from tagnotes.models.db_models import DBAttachment, DBHashtag, DBNote
from tagnotes.models.schema import (
    Attachment,
    Note,
    NoteKind,
    ensure_timezone_aware,
    utc_now,
)
from tagnotes.storage.base import Repository
from tagnotes.storage.position_sequencer import PositionSequencer

logger = logging.getLogger(__name__)


class NoteAggregateStore(Repository):
    """Atomic create/read/update/delete for the note aggregate.

    Every mutation of a note together with its hashtags or attachment rows
    happens inside one transaction, and every statement is scoped by the
    owning user id so a foreign note behaves exactly like a missing one.
    Blob bytes are not touched here; delete_note hands the blob keys back so
    the caller can remove them after the commit.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        sequencer: Optional[PositionSequencer] = None,
        transaction_timeout: Optional[float] = None,
    ):
        """Initialize the store.

        Args:
            engine: Shared SQLAlchemy engine. Built from config when None.
            sequencer: Position sequencer used when creating notes. One
                sharing this store's engine is created when None.
            transaction_timeout: Per-transaction time budget in seconds.
        """
        super().__init__(engine=engine, transaction_timeout=transaction_timeout)
        self.sequencer = sequencer or PositionSequencer(
            engine=self.engine, transaction_timeout=self.transaction_timeout
        )

    # =========================================================================
    # Conversion helpers
    # =========================================================================

    @staticmethod
    def _note_to_model(db_note: DBNote, hashtags: List[str]) -> Note:
        return Note(
            id=db_note.id,
            user_id=db_note.user_id,
            content=db_note.content,
            kind=NoteKind(db_note.kind),
            hashtags=list(hashtags),
            position=db_note.position,
            timestamp=ensure_timezone_aware(db_note.timestamp),
        )

    @staticmethod
    def _attachment_to_model(row: DBAttachment) -> Attachment:
        return Attachment(
            id=row.id,
            note_id=row.note_id,
            blob_key=row.blob_key,
            original_name=row.original_name,
            mime_type=row.mime_type,
            size=row.size,
            created_at=ensure_timezone_aware(row.created_at),
        )

    @staticmethod
    def _insert_hashtags(session: Session, note_id: int, hashtags: Iterable[str]) -> None:
        rows = [{"note_id": note_id, "tag": tag} for tag in hashtags]
        if rows:
            session.execute(insert(DBHashtag), rows)

    @staticmethod
    def _owned_note_id(
        session: Session, note_id: int, user_id: int, lock: bool = False
    ) -> Optional[int]:
        query = select(DBNote.id).where(
            DBNote.id == note_id, DBNote.user_id == user_id
        )
        if lock:
            query = query.with_for_update()
        return session.scalar(query)

    # =========================================================================
    # Notes
    # =========================================================================

    def create_note(
        self,
        user_id: int,
        content: str,
        kind: Union[NoteKind, str],
        hashtags: List[str],
    ) -> Note:
        """Insert a note and its hashtags as one unit.

        The note is placed in front of the user's existing notes. If any
        insert fails nothing is visible afterwards.
        """
        kind = NoteKind(kind)
        with self.transaction("create_note") as session:
            position = self.sequencer.assign_initial_position(session, user_id)
            db_note = DBNote(
                user_id=user_id,
                content=content,
                kind=kind.value,
                position=position,
                timestamp=utc_now(),
            )
            session.add(db_note)
            session.flush()
            self._insert_hashtags(session, db_note.id, hashtags)
            note = self._note_to_model(db_note, hashtags)

        logger.info(f"Created note {note.id} for user {user_id} at position {note.position}")
        return note

    def get_note(self, note_id: int, user_id: int) -> Note:
        """Get one note with its hashtags.

        Raises:
            NoteNotFoundError: If the note does not exist or is not owned.
        """
        with self.transaction("get_note", read_only=True) as session:
            db_note = session.scalar(
                select(DBNote).where(DBNote.id == note_id, DBNote.user_id == user_id)
            )
            if db_note is None:
                raise NoteNotFoundError(note_id)
            tags = session.scalars(
                select(DBHashtag.tag)
                .where(DBHashtag.note_id == note_id)
                .order_by(DBHashtag.id)
            ).all()
            return self._note_to_model(db_note, tags)

    def list_notes(
        self, user_id: int, offset: int = 0, limit: int = 20
    ) -> Tuple[List[Note], bool]:
        """One page of a user's notes with their hashtags.

        Hashtags come back from the same query joined with commas, which is
        why tags may not contain commas. Order is position ascending, then newest
        first, then id descending so equal timestamps stay stable.

        Returns:
            (notes, has_more) where has_more tells whether rows exist past
            this page.
        """
        with self.transaction("list_notes", read_only=True) as session:
            rows = session.execute(self.listing_query(user_id, offset, limit)).all()

        has_more = len(rows) > limit
        notes = [
            Note(
                id=row.id,
                user_id=row.user_id,
                content=row.content,
                kind=NoteKind(row.kind),
                hashtags=row.hashtags.split(",") if row.hashtags else [],
                position=row.position,
                timestamp=ensure_timezone_aware(row.timestamp),
            )
            for row in rows[:limit]
        ]
        return notes, has_more

    @staticmethod
    def listing_query(user_id: int, offset: int, limit: int) -> Select:
        """Notes of one user with their tags aggregated, fetching one row past the page.

        aggregate_strings renders as group_concat on SQLite and MySQL and as
        string_agg on PostgreSQL.
        """
        return (
            select(
                DBNote.id.label("id"),
                DBNote.user_id.label("user_id"),
                DBNote.content.label("content"),
                DBNote.kind.label("kind"),
                DBNote.position.label("position"),
                DBNote.timestamp.label("timestamp"),
                func.aggregate_strings(DBHashtag.tag, ",").label("hashtags"),
            )
            .select_from(DBNote)
            .outerjoin(DBHashtag, DBHashtag.note_id == DBNote.id)
            .where(DBNote.user_id == user_id)
            .group_by(DBNote.id)
            .order_by(
                DBNote.position.asc(),
                DBNote.timestamp.desc(),
                DBNote.id.desc(),
            )
            .offset(offset)
            .limit(limit + 1)
        )

    def count_notes(self, user_id: int) -> int:
        with self.transaction("count_notes", read_only=True) as session:
            return session.scalar(
                select(func.count(DBNote.id)).where(DBNote.user_id == user_id)
            ) or 0

    def note_belongs_to(self, note_id: int, user_id: int) -> bool:
        """Check whether note_id exists and is owned by user_id."""
        with self.transaction("check_ownership", read_only=True) as session:
            return self._owned_note_id(session, note_id, user_id) is not None

    def update_note(
        self,
        note_id: int,
        user_id: int,
        content: str,
        kind: Union[NoteKind, str],
        hashtags: List[str],
    ) -> Note:
        """Replace content, kind and the whole hashtag set of a note.

        The ownership check is the WHERE clause of the UPDATE itself, so it
        cannot go stale between check and write. The hashtag set is deleted
        and reinserted, not diffed. Concurrent edits: last commit wins.

        Raises:
            NoteNotFoundError: If the note does not exist or is not owned.
        """
        kind = NoteKind(kind)
        with self.transaction("update_note") as session:
            outcome = session.execute(
                update(DBNote)
                .where(DBNote.id == note_id, DBNote.user_id == user_id)
                .values(content=content, kind=kind.value)
                .execution_options(synchronize_session=False)
            )
            if not outcome.rowcount:
                raise NoteNotFoundError(note_id)

            session.execute(delete(DBHashtag).where(DBHashtag.note_id == note_id))
            self._insert_hashtags(session, note_id, hashtags)

            db_note = session.get(DBNote, note_id, populate_existing=True)
            note = self._note_to_model(db_note, hashtags)

        logger.info(f"Updated note {note_id} ({len(hashtags)} hashtags)")
        return note

    def delete_note(self, note_id: int, user_id: int) -> List[str]:
        """Delete a note with its hashtag and attachment rows.

        Reads the attachment blob keys in the same transaction, before the
        rows go away, and returns them. The blobs themselves are left for
        the caller to remove after commit; their removal can never undo or
        block the row deletion.

        Returns:
            Blob keys of the attachments the note had.

        Raises:
            NoteNotFoundError: If the note does not exist or is not owned.
        """
        with self.transaction("delete_note") as session:
            if self._owned_note_id(session, note_id, user_id, lock=True) is None:
                raise NoteNotFoundError(note_id)

            blob_keys = list(
                session.scalars(
                    select(DBAttachment.blob_key).where(DBAttachment.note_id == note_id)
                )
            )
            # Explicit child deletes keep the cascade independent of FK enforcement
            session.execute(delete(DBHashtag).where(DBHashtag.note_id == note_id))
            session.execute(delete(DBAttachment).where(DBAttachment.note_id == note_id))
            outcome = session.execute(
                delete(DBNote)
                .where(DBNote.id == note_id, DBNote.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            if not outcome.rowcount:
                raise NoteNotFoundError(note_id)

        logger.info(f"Deleted note {note_id} ({len(blob_keys)} attachments)")
        return blob_keys

    # =========================================================================
    # Attachment rows
    # =========================================================================

    def add_attachment(
        self,
        note_id: int,
        user_id: int,
        blob_key: str,
        original_name: str,
        mime_type: str,
        size: int,
    ) -> Attachment:
        """Insert an attachment row for an already written blob.

        Ownership is checked again inside the insert transaction, since the
        note may have been deleted while the blob was being written.

        Raises:
            NoteNotFoundError: If the note does not exist or is not owned.
        """
        with self.transaction("add_attachment") as session:
            if self._owned_note_id(session, note_id, user_id, lock=True) is None:
                raise NoteNotFoundError(note_id)
            row = DBAttachment(
                note_id=note_id,
                blob_key=blob_key,
                original_name=original_name,
                mime_type=mime_type,
                size=size,
                created_at=utc_now(),
            )
            session.add(row)
            session.flush()
            return self._attachment_to_model(row)

    def delete_attachment(
        self, attachment_id: int, note_id: int, user_id: int
    ) -> Attachment:
        """Delete one attachment row and return it (for its blob key).

        Raises:
            AttachmentNotFoundError: If no such attachment is on a note owned
                by user_id.
        """
        with self.transaction("delete_attachment") as session:
            row = session.scalar(
                select(DBAttachment)
                .join(DBNote, DBAttachment.note_id == DBNote.id)
                .where(
                    DBAttachment.id == attachment_id,
                    DBAttachment.note_id == note_id,
                    DBNote.user_id == user_id,
                )
            )
            if row is None:
                raise AttachmentNotFoundError(attachment_id, note_id)
            attachment = self._attachment_to_model(row)
            session.execute(
                delete(DBAttachment)
                .where(DBAttachment.id == attachment_id)
                .execution_options(synchronize_session=False)
            )
        return attachment

    def get_attachments_for_notes(
        self, user_id: int, note_ids: List[int]
    ) -> Dict[int, List[Attachment]]:
        """Attachment rows for exactly the given notes, grouped by note id.

        Scoped by user as well, so passing a foreign note id yields nothing.
        """
        if not note_ids:
            return {}

        with self.transaction("get_attachments", read_only=True) as session:
            rows = session.scalars(
                select(DBAttachment)
                .join(DBNote, DBAttachment.note_id == DBNote.id)
                .where(DBNote.user_id == user_id, DBAttachment.note_id.in_(note_ids))
                .order_by(DBAttachment.created_at, DBAttachment.id)
            ).all()

            grouped: Dict[int, List[Attachment]] = {}
            for row in rows:
                grouped.setdefault(row.note_id, []).append(
                    self._attachment_to_model(row)
                )
        return grouped
