"""SQLAlchemy database models for the tagnotes service."""
from typing import Optional

from sqlalchemy import (CheckConstraint, Column, DateTime, ForeignKey, Index,
                        Integer, String, Text, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from tagnotes.config import config
from tagnotes.models.schema import NoteKind, utc_now

# Create base class for SQLAlchemy models
Base = declarative_base()

# Connection execution option choosing the SQLite BEGIN flavour
SQLITE_BEGIN_OPTION = "sqlite_begin"


class DBUser(Base):
    """Database model for a user."""
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(100), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    notes = relationship(
        "DBNote", back_populates="user",
        cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content = Column(Text, nullable=False)
    kind = Column("type", String(10), default=NoteKind.TEXT.value, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    timestamp = Column(DateTime, default=utc_now, nullable=False)

    user = relationship("DBUser", back_populates="notes")
    hashtags = relationship(
        "DBHashtag", back_populates="note",
        cascade="all, delete-orphan", passive_deletes=True
    )
    attachments = relationship(
        "DBAttachment", back_populates="note",
        cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("type IN ('text', 'code')", name="ck_notes_type"),
        Index("ix_notes_user_position", "user_id", "position"),
    )

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, user_id={self.user_id}, position={self.position})>"


class DBHashtag(Base):
    """Database model for one hashtag on one note."""
    __tablename__ = "hashtags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag = Column(String(100), nullable=False)

    note = relationship("DBNote", back_populates="hashtags")

    def __repr__(self) -> str:
        return f"<Hashtag(note_id={self.note_id}, tag='{self.tag}')>"


class DBAttachment(Base):
    """Database model for attachment metadata. The bytes live in the BlobStore."""
    __tablename__ = "attachments"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    blob_key = Column(String(255), unique=True, nullable=False)
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    note = relationship("DBNote", back_populates="attachments")

    def __repr__(self) -> str:
        return f"<Attachment(id={self.id}, note_id={self.note_id}, key='{self.blob_key}')>"


def init_db(database_url: Optional[str] = None) -> Engine:
    """Create the shared engine and make sure the schema exists.

    The engine owns a bounded QueuePool; callers that cannot get a
    connection within pool_timeout see sqlalchemy.exc.TimeoutError, which
    the repositories translate into CapacityError. For SQLite every
    connection gets WAL journaling, enforced foreign keys (so ON DELETE
    CASCADE works) and a busy timeout. Transactions start with BEGIN
    IMMEDIATE so concurrent writers queue on the busy timeout, unless the
    connection carries SQLITE_BEGIN_OPTION="DEFERRED" (read-only work).
    """
    url = database_url or config.get_db_url()
    is_sqlite = url.startswith("sqlite")

    connect_args = {}
    if is_sqlite:
        connect_args = {
            "check_same_thread": False,
            "timeout": config.transaction_timeout,
        }

    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_recycle=3600,     # Recycle connections after 1 hour
        pool_pre_ping=True,    # Validate connections before use
        connect_args=connect_args,
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            # Let SQLAlchemy emit BEGIN itself (see begin_transaction)
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def begin_transaction(conn):
            # Read-then-write under a deferred BEGIN gets SQLITE_BUSY without waiting
            mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION, "IMMEDIATE")
            conn.exec_driver_sql(f"BEGIN {mode}")

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
