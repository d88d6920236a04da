"""Configuration module for the tagnotes service."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from tagnotes import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


logger = logging.getLogger(__name__)

_DEFAULT_JWT_SECRET = "change-me"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class TagNotesConfig(BaseModel):
    """Configuration for the tagnotes service."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("TAGNOTES_BASE_DIR", "."))
    )
    # Relational store. database_url wins when set (SQLite, MySQL or PostgreSQL);
    # otherwise a SQLite file at database_path is used.
    database_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("TAGNOTES_DATABASE_URL") or None
    )
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("TAGNOTES_DATABASE_PATH", "data/db/tagnotes.db")
        )
    )
    # Connection pool limits
    pool_size: int = Field(default_factory=lambda: _env_int("TAGNOTES_POOL_SIZE", 5))
    max_overflow: int = Field(
        default_factory=lambda: _env_int("TAGNOTES_MAX_OVERFLOW", 5)
    )
    # Seconds to wait for a pooled connection before giving up
    pool_timeout: int = Field(
        default_factory=lambda: _env_int("TAGNOTES_POOL_TIMEOUT", 10)
    )
    # Seconds a single transaction may take before it is rolled back
    transaction_timeout: float = Field(
        default_factory=lambda: float(os.getenv("TAGNOTES_TRANSACTION_TIMEOUT", "10"))
    )
    # Blob storage
    blob_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("TAGNOTES_BLOB_DIR", "data/uploads"))
    )
    max_upload_bytes: int = Field(
        default_factory=lambda: _env_int("TAGNOTES_MAX_UPLOAD_BYTES", 10 * 1024 * 1024)
    )
    attachment_base_url: str = Field(
        default_factory=lambda: os.getenv("TAGNOTES_ATTACHMENT_BASE_URL", "/uploads")
    )
    # Listing
    page_size: int = Field(default_factory=lambda: _env_int("TAGNOTES_PAGE_SIZE", 20))
    max_page_size: int = Field(
        default_factory=lambda: _env_int("TAGNOTES_MAX_PAGE_SIZE", 100)
    )
    # HTTP server
    host: str = Field(default_factory=lambda: os.getenv("TAGNOTES_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: _env_int("TAGNOTES_PORT", 3001))
    api_prefix: str = Field(
        default_factory=lambda: os.getenv("TAGNOTES_API_PREFIX", "/api")
    )
    server_version: str = Field(default=__version__)
    # Auth
    jwt_secret: str = Field(
        default_factory=lambda: os.getenv("TAGNOTES_JWT_SECRET", _DEFAULT_JWT_SECRET)
    )
    jwt_algorithm: str = Field(default="HS256")
    token_ttl_days: int = Field(
        default_factory=lambda: _env_int("TAGNOTES_TOKEN_TTL_DAYS", 7)
    )
    # Logging
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("TAGNOTES_LOG_DIR"))
            if os.getenv("TAGNOTES_LOG_DIR")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "TagNotesConfig":
        """Reject nonsensical limits and warn about an unset JWT secret."""
        if self.max_upload_bytes < 1:
            raise ValueError("max_upload_bytes must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.max_page_size < self.page_size:
            raise ValueError("max_page_size must be >= page_size")
        if self.pool_size < 1:
            raise ValueError("pool_size must be >= 1")
        if self.transaction_timeout <= 0:
            raise ValueError("transaction_timeout must be > 0")

        if self.jwt_secret == _DEFAULT_JWT_SECRET:
            logger.warning(
                "TAGNOTES_JWT_SECRET is not set; using an insecure default. "
                "Set it in the environment or .env before deploying."
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL, creating the SQLite directory if needed."""
        if self.database_url:
            return self.database_url
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_blob_dir(self) -> Path:
        """Get the absolute blob directory, creating it if needed."""
        blob_dir = self.get_absolute_path(self.blob_dir)
        blob_dir.mkdir(parents=True, exist_ok=True)
        return blob_dir


# Create a global config instance
config = TagNotesConfig()
