import logging
import os
from typing import Generator, Optional

from sqlalchemy import create_engine, event, make_url, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from wa_archive.config import settings

logger = logging.getLogger(__name__)


def _make_engine(url: str) -> Engine:
    """
    Create an engine; SQLite connections run in WAL mode so readers are not
    blocked while a history sync holds the write lock.
    """
    database = make_url(url).database
    if url.startswith("sqlite") and database and database != ":memory:":
        # The archive directory is created on first run
        os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)

    # check_same_thread=False is required for SQLite to work with FastAPI's async
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    new_engine = create_engine(url, connect_args=connect_args, echo=False)

    if new_engine.dialect.name == "sqlite":
        @event.listens_for(new_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


def _make_readonly_engine(url: str) -> Engine:
    """
    Create an engine for a database owned by another process.

    SQLite files are opened with mode=ro: no directory or file is created,
    no pragma is set, and a missing file fails on connect.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or not parsed.database or parsed.database == ":memory:":
        return create_engine(url, echo=False)

    readonly_url = parsed.set(
        database=f"file:{os.path.abspath(parsed.database)}",
        query={"mode": "ro", "uri": "true"},
    )
    return create_engine(readonly_url, connect_args={"check_same_thread": False}, echo=False)


# Archive database: chats + messages, single writer, many readers
engine = _make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Contact directory owned by the protocol client; only ever read here
contacts_engine: Optional[Engine] = (
    _make_readonly_engine(settings.CONTACTS_DATABASE_URL) if settings.CONTACTS_DATABASE_URL else None
)
ContactsSessionLocal = (
    sessionmaker(autocommit=False, autoflush=False, bind=contacts_engine)
    if contacts_engine is not None
    else None
)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the archive database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from wa_archive.models import Chat, Message  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    if contacts_engine is None:
        logger.info("No contact directory configured, sender names fall back to chat names")


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_contacts_db() -> Generator[Optional[Session], None, None]:
    """
    Dependency to get a contact directory session.
    Yields None when no directory is configured.
    """
    if ContactsSessionLocal is None:
        yield None
        return
    db = ContactsSessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and both archive tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

            result = db.execute(text(
                "SELECT COUNT(*) FROM sqlite_master "
                "WHERE type='table' AND name IN ('chats', 'messages')"
            )).scalar()
            if result != 2:
                logger.error("Database schema not applied: archive tables not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
