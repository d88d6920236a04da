"""Service layer for note operations."""

import logging
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Union

from tagnotes.exceptions import ErrorCode
from tagnotes.models.schema import (
    Attachment,
    AttachmentView,
    Note,
    NoteInput,
    NotePage,
    NoteView,
    ReorderInput,
    ReorderResult,
)
from tagnotes.observability import timed_operation, traced
from tagnotes.services.attachment_coordinator import AttachmentLifecycleCoordinator
from tagnotes.services.listing import ListingAssembler
from tagnotes.storage.blob_store import BlobStore
from tagnotes.storage.note_store import NoteAggregateStore
from tagnotes.utils import parse_payload

logger = logging.getLogger(__name__)

Scheduler = Callable[..., Any]


def to_note_view(note: Note, attachments: Optional[List[AttachmentView]] = None) -> NoteView:
    return NoteView(
        id=note.id,
        content=note.content,
        kind=note.kind,
        hashtags=list(note.hashtags),
        position=note.position,
        timestamp=note.timestamp,
        attachments=attachments or [],
    )


class NoteService:
    """Entry point for everything the API does with notes.

    Validates payloads, delegates to the storage and coordination components
    and records per-operation metrics. Every method takes the caller's
    user_id; nothing here trusts a client supplied owner.
    """

    def __init__(
        self,
        store: Optional[NoteAggregateStore] = None,
        blobs: Optional[BlobStore] = None,
        assembler: Optional[ListingAssembler] = None,
        attachments: Optional[AttachmentLifecycleCoordinator] = None,
    ):
        """Initialize the service.

        Args:
            store: Note aggregate store. Built from config when None.
            blobs: Blob store. Built from config when None.
            assembler: Listing assembler over store.
            attachments: Attachment coordinator over store and blobs.
        """
        self.store = store or NoteAggregateStore()
        self.blobs = blobs or BlobStore()
        self.assembler = assembler or ListingAssembler(self.store)
        self.attachments = attachments or AttachmentLifecycleCoordinator(
            self.store, self.blobs
        )

    # =========================================================================
    # Notes
    # =========================================================================

    @traced("create_note")
    def create_note(
        self, *, user_id: int, payload: Union[Dict[str, Any], NoteInput]
    ) -> NoteView:
        """Create a note in front of the user's existing notes.

        Raises:
            ValidationError: On blank content, unknown type or bad hashtags.
        """
        data = parse_payload(NoteInput, payload)
        note = self.store.create_note(
            user_id, data.content, data.kind, data.hashtags
        )
        return to_note_view(note)

    def get_note(self, user_id: int, note_id: int) -> NoteView:
        note = self.store.get_note(note_id, user_id)
        attachments = self.store.get_attachments_for_notes(user_id, [note_id])
        return to_note_view(
            note,
            [self.attachments.to_dto(a) for a in attachments.get(note_id, [])],
        )

    def list_notes(
        self, user_id: int, offset: int = 0, limit: Optional[int] = None
    ) -> NotePage:
        with timed_operation("list_notes", user_id=user_id) as op:
            page = self.assembler.assemble(user_id, offset=offset, limit=limit)
            op["result_count"] = len(page.notes)
        return page

    @traced("update_note")
    def update_note(
        self,
        *,
        user_id: int,
        note_id: int,
        payload: Union[Dict[str, Any], NoteInput],
    ) -> Note:
        """Replace a note's content, type and hashtags.

        Raises:
            ValidationError: On an invalid payload.
            NoteNotFoundError: If the note is missing or not owned.
        """
        data = parse_payload(NoteInput, payload)
        return self.store.update_note(
            note_id, user_id, data.content, data.kind, data.hashtags
        )

    @traced("delete_note")
    def delete_note(
        self,
        *,
        user_id: int,
        note_id: int,
        schedule: Optional[Scheduler] = None,
    ) -> List[str]:
        """Delete a note, then release its blobs.

        The relational delete commits first. Blob cleanup is handed to
        schedule(func, *args) when given (the HTTP layer passes a background
        task hook), otherwise it runs inline.

        Returns:
            Blob keys the note's attachments used.

        Raises:
            NoteNotFoundError: If the note is missing or not owned.
        """
        keys = self.store.delete_note(note_id, user_id)
        if keys:
            if schedule is not None:
                schedule(self.attachments.release_blobs, keys)
            else:
                self.attachments.release_blobs(keys)
        return keys

    def reorder(
        self, user_id: int, payload: Union[Dict[str, Any], ReorderInput]
    ) -> ReorderResult:
        """Apply a manual ordering.

        Raises:
            ValidationError: On non-integer or duplicate ids.
        """
        data = parse_payload(ReorderInput, payload, code=ErrorCode.DUPLICATE_REORDER_ID)
        with timed_operation("reorder", user_id=user_id) as op:
            result = self.store.sequencer.reorder(user_id, data.note_ids)
            op["updated"] = len(result.updated_ids)
            op["skipped"] = len(result.skipped_ids)
        return result

    # =========================================================================
    # Attachments
    # =========================================================================

    def upload_attachment(
        self,
        user_id: int,
        note_id: int,
        data: Union[bytes, BinaryIO],
        original_name: str,
        mime_type: Optional[str] = None,
    ) -> AttachmentView:
        with timed_operation("upload_attachment", user_id=user_id, note_id=note_id):
            attachment: Attachment = self.attachments.upload(
                note_id, user_id, data, original_name, mime_type
            )
        return self.attachments.to_dto(attachment)

    def remove_attachment(self, user_id: int, note_id: int, attachment_id: int) -> None:
        with timed_operation(
            "remove_attachment", user_id=user_id, note_id=note_id
        ):
            self.attachments.remove(attachment_id, note_id, user_id)
