"""Directory-backed storage for attachment bytes."""

import logging
import os
import uuid
from pathlib import Path
from typing import BinaryIO, Optional, Union

from tagnotes.config import config
from tagnotes.exceptions import (
    BlobNotFoundError,
    CapacityError,
    ErrorCode,
    StorageError,
    ValidationError,
)
from tagnotes.models.schema import validate_blob_key
from tagnotes.utils import sanitize_filename

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
STAGING_DIR_NAME = ".staging"


class BlobStore:
    """Stores opaque blobs as files named by their key.

    Writes go to a .staging subdirectory first and are renamed into place
    only once the whole payload is on disk and under the size ceiling, so a
    reader never sees a partial blob. There is no locking: distinct keys are
    independent, and a read racing a delete of the same key may miss.
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        max_blob_bytes: Optional[int] = None,
    ):
        """Initialize the blob store.

        Args:
            root: Directory that holds the blobs. If None, uses config.blob_dir.
            max_blob_bytes: Size ceiling per blob. If None, uses
                config.max_upload_bytes.
        """
        self.root = (
            config.get_absolute_path(root) if root else config.get_blob_dir()
        )
        self.root.mkdir(parents=True, exist_ok=True)
        self.max_blob_bytes = (
            max_blob_bytes if max_blob_bytes is not None else config.max_upload_bytes
        )
        self._staging_dir = self.root / STAGING_DIR_NAME
        self._cleanup_staging()

    def _cleanup_staging(self) -> None:
        """Remove staging files left behind by writes that crashed midway."""
        if not self._staging_dir.exists():
            return

        leftovers = [p for p in self._staging_dir.iterdir() if p.is_file()]
        if leftovers:
            logger.warning(
                f"Found {len(leftovers)} unfinished blob writes from a previous "
                f"run. Cleaning up..."
            )
        for path in leftovers:
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove staging file {path.name}: {e}")

    @staticmethod
    def generate_key(original_name: str) -> str:
        """Build a fresh collision-resistant key that keeps a readable suffix."""
        safe_name = sanitize_filename(original_name) or "file"
        return f"{uuid.uuid4().hex}_{safe_name}"

    def _path(self, key: str) -> Path:
        try:
            validate_blob_key(key)
        except ValueError as e:
            raise ValidationError(
                str(e), field="key", value=key, code=ErrorCode.INVALID_BLOB_KEY
            ) from e
        return self.root / key

    def check_size(self, size: int) -> None:
        """Raise CapacityError when size is over the ceiling."""
        if size > self.max_blob_bytes:
            raise CapacityError(
                f"Blob of {size} bytes exceeds the {self.max_blob_bytes} byte limit",
                code=ErrorCode.UPLOAD_TOO_LARGE,
                limit=self.max_blob_bytes,
            )

    def write(self, key: str, source: Union[bytes, BinaryIO]) -> int:
        """Store a blob under key.

        Args:
            key: Blob key from generate_key().
            source: The bytes, or a binary file object read in chunks.

        Returns:
            Number of bytes written.

        Raises:
            CapacityError: If the payload exceeds the ceiling. Nothing is
                left on disk.
            StorageError: On I/O failure. Nothing is left on disk.
        """
        final_path = self._path(key)
        if isinstance(source, (bytes, bytearray)):
            self.check_size(len(source))

        self._staging_dir.mkdir(parents=True, exist_ok=True)
        staging_path = self._staging_dir / key
        written = 0
        try:
            with open(staging_path, "wb") as f:
                if isinstance(source, (bytes, bytearray)):
                    f.write(source)
                    written = len(source)
                else:
                    while True:
                        chunk = source.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        written += len(chunk)
                        self.check_size(written)
                        f.write(chunk)
                f.flush()
                os.fsync(f.fileno())
            # POSIX atomic rename (same filesystem)
            os.replace(staging_path, final_path)
        except CapacityError:
            self._discard(staging_path)
            raise
        except OSError as e:
            self._discard(staging_path)
            raise StorageError(
                f"Failed to write blob {key}",
                operation="blob_write",
                path=str(final_path),
                code=ErrorCode.BLOB_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.debug(f"Stored blob {key} ({written} bytes)")
        return written

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to discard staging file {path.name}: {e}")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def path_for(self, key: str) -> Path:
        """Return the on-disk path of an existing blob.

        Raises:
            BlobNotFoundError: If no blob is stored under key.
        """
        path = self._path(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        return path

    def read(self, key: str) -> bytes:
        """Return the bytes stored under key.

        Raises:
            BlobNotFoundError: If no blob is stored under key.
            StorageError: On I/O failure.
        """
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise BlobNotFoundError(key) from e
        except OSError as e:
            raise StorageError(
                f"Failed to read blob {key}",
                operation="blob_read",
                path=str(path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def delete(self, key: str) -> bool:
        """Delete a blob.

        Returns:
            True if the blob was removed, False if it was already gone.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to delete blob {key}",
                operation="blob_delete",
                path=str(path),
                code=ErrorCode.BLOB_DELETE_FAILED,
                original_error=e,
            ) from e
        logger.debug(f"Deleted blob {key}")
        return True
