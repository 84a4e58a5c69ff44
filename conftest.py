"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any wa_archive import so the
module-level settings and engines point at throwaway SQLite files.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./.test_store/messages.db")
os.environ.setdefault("CONTACTS_DATABASE_URL", "sqlite:///./.test_store/whatsapp.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")

import pytest
from sqlalchemy import create_engine

# Clear settings cache before any app imports to ensure test env vars are used
from wa_archive.config import get_settings
get_settings.cache_clear()

from wa_archive.models import directory_metadata
from wa_archive.storage import Base, ContactsSessionLocal, SessionLocal, engine

# The app only ever reads the contact directory; tests play the protocol
# client and write it through their own engine
directory_engine = create_engine(get_settings().CONTACTS_DATABASE_URL)


@pytest.fixture(scope="function")
def db():
    """Archive session on freshly created tables, dropped after the test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def directory():
    """Writable connection to the contact directory with the whatsmeow tables created."""
    directory_metadata.create_all(bind=directory_engine)
    with directory_engine.connect() as connection:
        yield connection
    directory_metadata.drop_all(bind=directory_engine)


@pytest.fixture(scope="function")
def contacts_db(directory):
    """Read-only contact directory session, as the app opens it."""
    session = ContactsSessionLocal()
    yield session
    session.close()
