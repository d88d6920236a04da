"""Shared transaction handling for the SQL-backed repositories."""

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from tagnotes.config import config
from tagnotes.exceptions import (
    CapacityError,
    ErrorCode,
    StorageError,
    TagNotesError,
)
from tagnotes.models.db_models import SQLITE_BEGIN_OPTION, get_session_factory, init_db

logger = logging.getLogger(__name__)


class Repository:
    """Base class for repositories that share one engine.

    The engine (and with it the connection pool) is created once at process
    start and passed in. Every operation borrows a connection through
    transaction(), which always returns it to the pool.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        transaction_timeout: Optional[float] = None,
    ):
        """Initialize the repository.

        Args:
            engine: Pre-configured SQLAlchemy engine. When None, one is
                built from the global config via init_db().
            transaction_timeout: Seconds a transaction may run before it is
                rolled back. Defaults to config.transaction_timeout.
        """
        self.engine = engine if engine is not None else init_db()
        self.session_factory = get_session_factory(self.engine)
        self.transaction_timeout = (
            transaction_timeout
            if transaction_timeout is not None
            else config.transaction_timeout
        )

    @contextmanager
    def transaction(self, operation: str, read_only: bool = False) -> Iterator[Session]:
        """Run the block as one transaction.

        Commits when the block finishes within the time budget. Any
        exception rolls everything back. SQLAlchemy errors are re-raised as
        StorageError, pool exhaustion as CapacityError, and domain errors
        raised inside the block pass through unchanged.

        Args:
            operation: Name used in error details and logs.
            read_only: The block only reads. On SQLite it then starts with a
                deferred BEGIN and does not wait behind writers.
        """
        session = self.session_factory()
        started = time.monotonic()
        try:
            if read_only:
                session.connection(execution_options={SQLITE_BEGIN_OPTION: "DEFERRED"})
            yield session
            elapsed = time.monotonic() - started
            if elapsed > self.transaction_timeout:
                raise StorageError(
                    f"Transaction exceeded {self.transaction_timeout}s budget",
                    operation=operation,
                    code=ErrorCode.TRANSACTION_TIMEOUT,
                )
            session.commit()
        except TagNotesError:
            session.rollback()
            raise
        except PoolTimeoutError as e:
            session.rollback()
            logger.warning(f"Connection pool exhausted during {operation}: {e}")
            raise CapacityError(
                "Database connection pool exhausted",
                code=ErrorCode.POOL_EXHAUSTED,
                original_error=e,
            ) from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Transaction for {operation} failed, rolled back: {e}")
            raise StorageError(
                f"Storage failure during {operation}",
                operation=operation,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
