"""Custom exceptions for the tagnotes service.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Ownership failures are reported as
not-found so callers cannot discover other users' notes.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Not found errors (1xxx)
    NOTE_NOT_FOUND = 1001
    ATTACHMENT_NOT_FOUND = 1002
    BLOB_NOT_FOUND = 1003
    USER_NOT_FOUND = 1004

    # Validation errors (2xxx)
    VALIDATION_FAILED = 2001
    INVALID_NOTE_KIND = 2002
    INVALID_HASHTAG = 2003
    INVALID_BLOB_KEY = 2004
    DUPLICATE_REORDER_ID = 2005
    USER_ALREADY_EXISTS = 2006

    # Authentication errors (3xxx)
    AUTH_MISSING_TOKEN = 3001
    AUTH_INVALID_TOKEN = 3002
    AUTH_INVALID_CREDENTIALS = 3003

    # Capacity errors (4xxx)
    UPLOAD_TOO_LARGE = 4001
    POOL_EXHAUSTED = 4002

    # Storage errors (5xxx)
    STORAGE_READ_FAILED = 5001
    STORAGE_WRITE_FAILED = 5002
    STORAGE_DELETE_FAILED = 5003
    TRANSACTION_TIMEOUT = 5004
    BLOB_WRITE_FAILED = 5005
    BLOB_DELETE_FAILED = 5006

    # Non-fatal consistency warnings (9xxx)
    ORPHAN_BLOB = 9001


class TagNotesError(Exception):
    """Base exception for all tagnotes errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    http_status = 500

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ValidationError(TagNotesError):
    """Raised for malformed or missing input fields."""

    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class UserExistsError(ValidationError):
    """Raised when registering a username or email that is already taken."""

    def __init__(self, username: str, email: str):
        super().__init__(
            "User already exists",
            field="username",
            value=username,
            code=ErrorCode.USER_ALREADY_EXISTS,
        )
        self.details["email"] = email


class AuthenticationError(TagNotesError):
    """Raised when credentials or bearer tokens are missing or invalid."""

    http_status = 401

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.AUTH_INVALID_TOKEN
    ):
        super().__init__(message, code=code)
        # A present-but-bad token is forbidden, a missing one unauthorized
        if code == ErrorCode.AUTH_INVALID_TOKEN:
            self.http_status = 403


class NotFoundError(TagNotesError):
    """Raised when a resource is absent or not owned by the caller."""

    http_status = 404


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found for the requesting user."""

    def __init__(self, note_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Note {note_id} not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class AttachmentNotFoundError(NotFoundError):
    """Raised when an attachment cannot be found on the given note."""

    def __init__(self, attachment_id: int, note_id: int):
        super().__init__(
            f"Attachment {attachment_id} not found",
            code=ErrorCode.ATTACHMENT_NOT_FOUND,
            details={"attachment_id": attachment_id, "note_id": note_id}
        )
        self.attachment_id = attachment_id
        self.note_id = note_id


class BlobNotFoundError(NotFoundError):
    """Raised when a blob key has no stored bytes."""

    def __init__(self, key: str):
        super().__init__(
            "Blob not found",
            code=ErrorCode.BLOB_NOT_FOUND,
            details={"key": key}
        )
        self.key = key


class CapacityError(TagNotesError):
    """Raised when a size ceiling or the connection pool limit is hit."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UPLOAD_TOO_LARGE,
        limit: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if limit is not None:
            details["limit"] = limit
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.limit = limit
        self.original_error = original_error
        self.http_status = 413 if code == ErrorCode.UPLOAD_TOO_LARGE else 503


class StorageError(TagNotesError):
    """Raised for relational transaction failures and blob I/O failures."""

    http_status = 500

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages for security
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class OrphanResourceWarning(TagNotesError):
    """Non-fatal record of a blob left without a metadata row.

    Never raised. Built and logged when an upload wrote its blob but the
    metadata insert failed, or when a metadata row was deleted but its blob
    could not be removed. A reconciliation pass can find these blobs later
    by listing keys that have no attachments row.
    """

    def __init__(
        self,
        blob_key: str,
        reason: str,
        note_id: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"blob_key": blob_key, "reason": reason}
        if note_id is not None:
            details["note_id"] = note_id
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(
            f"Blob {blob_key} has no metadata row",
            code=ErrorCode.ORPHAN_BLOB,
            details=details
        )
        self.blob_key = blob_key
        self.reason = reason
