"""Storage layer for the tagnotes service."""

from tagnotes.storage.base import Repository
from tagnotes.storage.blob_store import BlobStore
from tagnotes.storage.note_store import NoteAggregateStore
from tagnotes.storage.position_sequencer import PositionSequencer
from tagnotes.storage.user_repository import UserRepository

__all__ = [
    "Repository",
    "BlobStore",
    "NoteAggregateStore",
    "PositionSequencer",
    "UserRepository",
]
