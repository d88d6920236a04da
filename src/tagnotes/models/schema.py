"""Data models for the tagnotes service."""

import datetime
import re
from dataclasses import dataclass, field
from datetime import timezone
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_HASHTAG_LENGTH = 100
MAX_ORIGINAL_NAME_LENGTH = 255
MAX_MIME_TYPE_LENGTH = 100
DEFAULT_MIME_TYPE = "application/octet-stream"
MAX_PASSWORD_BYTES = 72

# Largest value an SQLite INTEGER column can hold
MAX_ROW_ID = 2 ** 63 - 1
RowId = Annotated[int, Field(ge=1, le=MAX_ROW_ID)]

# Blob keys end up as file names inside the blob directory
SAFE_BLOB_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_\-.]+$")


def validate_blob_key(value: str) -> str:
    """Validate that a blob key is safe to use as a file name.

    Rejects empty keys, path separators, parent references and anything
    outside alphanumerics, underscore, hyphen and dot.

    Raises:
        ValueError: If the key is unsafe
    """
    if not value:
        raise ValueError("Blob key cannot be empty")
    if ".." in value:
        raise ValueError("Blob key cannot contain '..' (path traversal)")
    if "/" in value or "\\" in value:
        raise ValueError("Blob key cannot contain path separators")
    if not SAFE_BLOB_KEY_PATTERN.match(value):
        raise ValueError(
            "Blob key contains invalid characters. "
            "Only alphanumeric characters, underscores, hyphens and dots are allowed."
        )
    return value


def normalize_hashtags(tags: List[str]) -> List[str]:
    """Strip, validate and de-duplicate a hashtag list, keeping first occurrences.

    Raises:
        ValueError: On blank tags, tags with whitespace or commas, or tags
            longer than MAX_HASHTAG_LENGTH
    """
    seen = set()
    result = []
    for raw in tags:
        if not isinstance(raw, str):
            raise ValueError(f"Hashtag must be a string, got {type(raw).__name__}")
        tag = raw.strip()
        if not tag:
            raise ValueError("Hashtag cannot be blank")
        if "," in tag or any(ch.isspace() for ch in tag):
            # Commas would break the concatenated listing column
            raise ValueError(f"Hashtag '{tag}' cannot contain commas or whitespace")
        if len(tag) > MAX_HASHTAG_LENGTH:
            raise ValueError(f"Hashtag longer than {MAX_HASHTAG_LENGTH} characters")
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes even though everything is written in UTC.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


class NoteKind(str, Enum):
    """How a note's content is meant to be displayed."""

    TEXT = "text"
    CODE = "code"


class NoteInput(BaseModel):
    """Validated payload for creating or editing a note."""

    content: str = Field(..., description="Note body")
    kind: NoteKind = Field(default=NoteKind.TEXT, alias="type")
    hashtags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Note content cannot be empty")
        return v

    @field_validator("hashtags", mode="before")
    @classmethod
    def validate_hashtags(cls, v: Optional[List[str]]) -> List[str]:
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("hashtags must be a list")
        return normalize_hashtags(v)


class ReorderInput(BaseModel):
    """Validated payload for a reorder request."""

    note_ids: List[RowId] = Field(default_factory=list, alias="noteIds")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("note_ids")
    @classmethod
    def validate_unique(cls, v: List[int]) -> List[int]:
        if len(set(v)) != len(v):
            raise ValueError("noteIds must not contain duplicates")
        return v


class RegisterInput(BaseModel):
    """Validated payload for account registration."""

    username: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=1)

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        # bcrypt only looks at the first 72 bytes
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
        return v


class LoginInput(BaseModel):
    """Validated payload for login by username or email."""

    login: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="ignore")


class Note(BaseModel):
    """A stored note together with its hashtag set."""

    id: int
    user_id: int
    content: str
    kind: NoteKind = NoteKind.TEXT
    hashtags: List[str] = Field(default_factory=list)
    position: int = 0
    timestamp: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True}


class Attachment(BaseModel):
    """Metadata row for a stored blob."""

    id: int
    note_id: int
    blob_key: str
    original_name: str
    mime_type: str = DEFAULT_MIME_TYPE
    size: int = 0
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class AttachmentView(BaseModel):
    """Attachment as returned to clients, with its download URL."""

    id: int
    note_id: int = Field(alias="noteId")
    filename: str
    original_name: str = Field(alias="originalName")
    mime_type: str = Field(alias="mimeType")
    size: int
    url: str

    model_config = ConfigDict(populate_by_name=True)


class NoteView(BaseModel):
    """Read-optimized note with hashtags and attachments joined in."""

    id: int
    content: str
    kind: NoteKind = Field(alias="type")
    hashtags: List[str] = Field(default_factory=list)
    position: int
    timestamp: datetime.datetime
    attachments: List[AttachmentView] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class NotePage(BaseModel):
    """One page of a user's notes."""

    notes: List[NoteView] = Field(default_factory=list)
    has_more: bool = Field(default=False, alias="hasMore")

    model_config = ConfigDict(populate_by_name=True)


class User(BaseModel):
    """A registered user. The password hash never leaves the storage layer."""

    id: int
    username: str
    email: str
    created_at: datetime.datetime = Field(default_factory=utc_now)


@dataclass
class ReorderResult:
    """Outcome of a reorder request.

    Attributes:
        updated_ids: Ids whose position was rewritten, in payload order.
        skipped_ids: Ids that matched no note owned by the user.
    """

    updated_ids: List[int] = field(default_factory=list)
    skipped_ids: List[int] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.skipped_ids)

    def to_dict(self) -> dict:
        return {
            "updated": len(self.updated_ids),
            "skipped": list(self.skipped_ids),
        }
