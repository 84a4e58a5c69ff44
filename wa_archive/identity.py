"""
Sender identity resolution.

The identity cache maps a raw sender identifier to a display name. It is
rebuilt for every query from three sources, lowest priority first:

1. chat names from the archive (often just phone numbers)
2. the protocol client's contact directory (full name, else push name)
3. the LID map, resolved through whatever 1 and 2 produced

Names are registered under both the full JID and its local-part.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wa_archive.metrics import record_identity_source_failure
from wa_archive.models import Chat, contacts_table, lid_map_table
from wa_archive.utils import LID_SERVER, USER_SERVER

logger = logging.getLogger(__name__)

IdentityCache = dict[str, str]


def _register(cache: IdentityCache, jid: str, name: str) -> None:
    cache[jid] = name
    idx = jid.find("@")
    if idx > 0:
        cache[jid[:idx]] = name


def merge_identity_sources(
    chat_names: Iterable[tuple[str, Optional[str]]],
    contacts: Iterable[tuple[str, Optional[str], Optional[str]]],
    lid_links: Iterable[tuple[str, str]],
) -> IdentityCache:
    """
    Merge the three identity sources into a lookup table.

    Args:
        chat_names: (jid, name) rows from the chats table
        contacts: (jid, full_name, push_name) rows from the contact directory
        lid_links: (lid, pn) rows mapping a linked identifier to a phone number

    Returns:
        Mapping of identifier (full JID and local-part) to display name
    """
    cache: IdentityCache = {}

    for jid, name in chat_names:
        if name:
            _register(cache, jid, name)

    for jid, full_name, push_name in contacts:
        name = full_name or push_name
        if name:
            _register(cache, jid, name)

    for lid, pn in lid_links:
        name = cache.get(f"{pn}@{USER_SERVER}") or cache.get(pn)
        if name:
            cache[f"{lid}@{LID_SERVER}"] = name
            cache[lid] = name

    return cache


def _read_source(source: str, session: Optional[Session], statement) -> list:
    if session is None:
        return []
    try:
        return [tuple(row) for row in session.execute(statement).all()]
    except SQLAlchemyError as e:
        logger.warning(f"Could not read identity source {source}: {e}")
        record_identity_source_failure(source)
        session.rollback()
        return []


def build_identity_cache(db: Session, contacts_db: Optional[Session] = None) -> IdentityCache:
    """
    Build the sender lookup from the archive and the optional contact directory.

    Never raises: an unreadable or missing source just contributes nothing.
    """
    chat_names = _read_source(
        "chats",
        db,
        select(Chat.jid, Chat.name).where(Chat.name.isnot(None), Chat.name != ""),
    )
    contacts = _read_source(
        "contacts",
        contacts_db,
        select(contacts_table.c.their_jid, contacts_table.c.full_name, contacts_table.c.push_name),
    )
    lid_links = _read_source(
        "lid_map",
        contacts_db,
        select(lid_map_table.c.lid, lid_map_table.c.pn),
    )

    cache = merge_identity_sources(chat_names, contacts, lid_links)
    logger.debug(
        f"Identity cache built: {len(cache)} keys from {len(chat_names)} chats, "
        f"{len(contacts)} contacts, {len(lid_links)} LID links"
    )
    return cache


def lookup_contact_full_name(contacts_db: Optional[Session], jid: str) -> Optional[str]:
    """Return the directory's full name for a JID, or None when unknown or unavailable."""
    if contacts_db is None:
        return None
    try:
        return contacts_db.execute(
            select(contacts_table.c.full_name)
            .where(contacts_table.c.their_jid == jid, contacts_table.c.full_name != "")
            .limit(1)
        ).scalar()
    except SQLAlchemyError as e:
        logger.warning(f"Contact lookup failed for {jid}: {e}")
        record_identity_source_failure("contacts")
        contacts_db.rollback()
        return None
