"""Coordinates attachment uploads and removals across the blob store and the database."""

from typing import BinaryIO, Iterable, Optional, Union

from tagnotes.config import config
from tagnotes.exceptions import (
    NoteNotFoundError,
    OrphanResourceWarning,
    StorageError,
    TagNotesError,
    ValidationError,
)
from tagnotes.models.schema import (
    DEFAULT_MIME_TYPE,
    MAX_MIME_TYPE_LENGTH,
    MAX_ORIGINAL_NAME_LENGTH,
    Attachment,
    AttachmentView,
)
from tagnotes.observability import get_logger, metrics
from tagnotes.services.listing import to_attachment_view
from tagnotes.storage.blob_store import BlobStore
from tagnotes.storage.note_store import NoteAggregateStore

logger = get_logger("attachments")


class AttachmentLifecycleCoordinator:
    """Keeps attachment blobs and attachment rows in step.

    There is no transaction spanning both stores, so the order of steps
    decides which inconsistency is possible:

    - upload writes the blob first and the row second. A failed row insert
      leaves an orphan blob (logged and counted), never a row without bytes.
    - remove deletes the row first and the blob second. A failed blob delete
      leaves an orphan blob, never a dangling row.

    Orphan blobs are invisible to clients and can be swept later by listing
    keys that have no attachments row.
    """

    def __init__(
        self,
        store: NoteAggregateStore,
        blobs: BlobStore,
        attachment_base_url: Optional[str] = None,
    ):
        self.store = store
        self.blobs = blobs
        self.attachment_base_url = (
            attachment_base_url
            if attachment_base_url is not None
            else config.attachment_base_url
        )

    def _report_orphan(
        self,
        blob_key: str,
        reason: str,
        note_id: Optional[int] = None,
        error: Optional[Exception] = None,
    ) -> OrphanResourceWarning:
        warning = OrphanResourceWarning(
            blob_key, reason, note_id=note_id, original_error=error
        )
        metrics.increment("orphan_blob")
        logger.warning(str(warning), blob_key=blob_key, reason=reason)
        return warning

    def upload(
        self,
        note_id: int,
        user_id: int,
        data: Union[bytes, BinaryIO],
        original_name: str,
        mime_type: Optional[str] = None,
    ) -> Attachment:
        """Store a file and attach it to a note.

        Args:
            note_id: Note that receives the attachment.
            user_id: Caller; must own the note.
            data: File bytes, or a binary file object streamed in chunks.
            original_name: Client side file name, kept for display.
            mime_type: Declared content type.

        Returns:
            The new attachment row.

        Raises:
            ValidationError: If original_name is blank.
            CapacityError: If the file is over max_upload_bytes. Nothing is
                written.
            NoteNotFoundError: If the note is missing or not owned. Nothing
                is written when this is detected before the blob write.
            StorageError: If the blob write or the row insert fails.
        """
        if not original_name or not original_name.strip():
            raise ValidationError(
                "Attachment must have a file name", field="originalName"
            )
        if isinstance(data, (bytes, bytearray)):
            self.blobs.check_size(len(data))

        if not self.store.note_belongs_to(note_id, user_id):
            raise NoteNotFoundError(note_id)

        key = self.blobs.generate_key(original_name)
        size = self.blobs.write(key, data)

        try:
            attachment = self.store.add_attachment(
                note_id,
                user_id,
                blob_key=key,
                original_name=original_name.strip()[:MAX_ORIGINAL_NAME_LENGTH],
                mime_type=(mime_type or DEFAULT_MIME_TYPE)[:MAX_MIME_TYPE_LENGTH],
                size=size,
            )
        except TagNotesError as e:
            self._report_orphan(key, "metadata_insert_failed", note_id=note_id, error=e)
            raise

        logger.info(
            f"Attached {attachment.original_name} to note {note_id}",
            attachment_id=attachment.id,
            size=size,
        )
        return attachment

    def remove(self, attachment_id: int, note_id: int, user_id: int) -> None:
        """Detach and delete one attachment.

        The row goes first, inside a transaction that checks ownership. The
        blob delete afterwards is best effort: if it fails the call still
        succeeds and the blob is reported as an orphan.

        Raises:
            AttachmentNotFoundError: If the attachment is not on a note owned
                by user_id.
        """
        attachment = self.store.delete_attachment(attachment_id, note_id, user_id)
        try:
            self.blobs.delete(attachment.blob_key)
        except StorageError as e:
            self._report_orphan(
                attachment.blob_key, "blob_delete_failed", note_id=note_id, error=e
            )
        logger.info(f"Removed attachment {attachment_id} from note {note_id}")

    def release_blobs(self, keys: Iterable[str]) -> int:
        """Delete the blobs of a note that is already gone.

        Runs after the note deletion committed, often as a background task,
        so it never raises for blob I/O.

        Returns:
            Number of blobs actually removed.
        """
        removed = 0
        for key in keys:
            try:
                if self.blobs.delete(key):
                    removed += 1
            except StorageError as e:
                self._report_orphan(key, "blob_delete_failed", error=e)
        return removed

    def to_dto(self, attachment: Attachment) -> AttachmentView:
        return to_attachment_view(attachment, self.attachment_base_url)
