"""Builds the paginated note listing returned to clients."""

import logging
from typing import List, Optional

from tagnotes.config import config
from tagnotes.exceptions import ValidationError
from tagnotes.models.schema import Attachment, AttachmentView, NotePage, NoteView
from tagnotes.storage.note_store import NoteAggregateStore

logger = logging.getLogger(__name__)


def to_attachment_view(attachment: Attachment, base_url: str) -> AttachmentView:
    """Shape an attachment row for clients. The URL is derived, never stored."""
    return AttachmentView(
        id=attachment.id,
        note_id=attachment.note_id,
        filename=attachment.blob_key,
        original_name=attachment.original_name,
        mime_type=attachment.mime_type,
        size=attachment.size,
        url=f"{base_url.rstrip('/')}/{attachment.blob_key}",
    )


class ListingAssembler:
    """Joins notes, hashtags and attachments into one page in two queries.

    Query 1 fetches the page of notes with hashtags aggregated in SQL.
    Query 2 fetches attachments for exactly the ids on that page. The join
    happens in memory, so a page never costs one query per note.
    """

    def __init__(
        self,
        store: NoteAggregateStore,
        attachment_base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        max_page_size: Optional[int] = None,
    ):
        self.store = store
        self.attachment_base_url = (
            attachment_base_url
            if attachment_base_url is not None
            else config.attachment_base_url
        )
        self.page_size = page_size or config.page_size
        self.max_page_size = max_page_size or config.max_page_size

    def assemble(
        self, user_id: int, offset: int = 0, limit: Optional[int] = None
    ) -> NotePage:
        """Return one page of the user's notes in display order.

        Args:
            user_id: Owner of the notes.
            offset: Rows to skip, >= 0.
            limit: Page size, >= 1. Defaults to page_size and is capped at
                max_page_size.

        Raises:
            ValidationError: If offset or limit is out of range.
        """
        if offset < 0:
            raise ValidationError("offset must be >= 0", field="offset", value=offset)
        if limit is None:
            limit = self.page_size
        if limit < 1:
            raise ValidationError("limit must be >= 1", field="limit", value=limit)
        limit = min(limit, self.max_page_size)

        notes, has_more = self.store.list_notes(user_id, offset=offset, limit=limit)
        if not notes:
            return NotePage(notes=[], has_more=has_more)

        note_ids = [note.id for note in notes]
        by_note = self.store.get_attachments_for_notes(user_id, note_ids)

        views: List[NoteView] = []
        for note in notes:
            views.append(
                NoteView(
                    id=note.id,
                    content=note.content,
                    kind=note.kind,
                    hashtags=list(note.hashtags),
                    position=note.position,
                    timestamp=note.timestamp,
                    attachments=[
                        to_attachment_view(a, self.attachment_base_url)
                        for a in by_note.get(note.id, [])
                    ],
                )
            )

        logger.debug(
            f"Assembled page for user {user_id}: {len(views)} notes "
            f"(offset={offset}, limit={limit}, has_more={has_more})"
        )
        return NotePage(notes=views, has_more=has_more)
