"""
Read queries over the message archive.

Every function takes the archive session and, where sender names are shown,
an optional contact directory session. The identity cache is rebuilt per
call so results always reflect the latest committed writes.

List functions return an empty list when nothing matches; single-entity
lookups raise NotFoundError. Database failures surface as StorageError.
"""

import logging
from datetime import datetime
from typing import Literal, Optional

from sqlalchemy import Select, and_, literal_column, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from wa_archive.context import context_window, messages_select, window_rows
from wa_archive.errors import NotFoundError, StorageError
from wa_archive.identity import build_identity_cache
from wa_archive.metrics import record_context_expansion_failure
from wa_archive.models import Chat, Message
from wa_archive.projector import chat_columns, project_chat, project_contact, project_message
from wa_archive.schemas import ChatView, ContactView, MessageContext, MessageView
from wa_archive.utils import GROUP_SUFFIX, to_utc_naive

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
CONTACT_SEARCH_LIMIT = 50

ChatSort = Literal["last_active", "name"]


# =============================================================================
# Helpers
# =============================================================================

def _fetch_all(db: Session, statement: Select, operation: str) -> list:
    try:
        return db.execute(statement).all()
    except SQLAlchemyError as e:
        logger.error(f"Query failed ({operation}): {e}")
        raise StorageError(operation, e) from e


def _fetch_first(db: Session, statement: Select, operation: str):
    try:
        return db.execute(statement.limit(1)).first()
    except SQLAlchemyError as e:
        logger.error(f"Query failed ({operation}): {e}")
        raise StorageError(operation, e) from e


def _chats_select(include_last_message: bool) -> Select:
    """
    SELECT chats, optionally LEFT JOINed with the message whose timestamp equals
    the chat's last_message_time. When several messages share that timestamp the
    most recently inserted one (highest rowid) is joined, so a chat yields one row.
    """
    statement = select(*chat_columns(include_last_message)).select_from(Chat)
    if not include_last_message:
        return statement

    latest = aliased(Message, name="latest")
    last_message_id = (
        select(latest.id)
        .where(latest.chat_jid == Chat.jid, latest.timestamp == Chat.last_message_time)
        .order_by(literal_column("latest.rowid").desc())
        .limit(1)
        .correlate(Chat)
        .scalar_subquery()
    )
    return statement.outerjoin(
        Message,
        and_(Message.chat_jid == Chat.jid, Message.id == last_message_id),
    )


def _page(statement: Select, limit: int, page: int) -> Select:
    return statement.limit(limit).offset(page * limit)


# =============================================================================
# Messages
# =============================================================================

def list_messages(
    db: Session,
    contacts_db: Optional[Session] = None,
    after: Optional[datetime] = None,
    before: Optional[datetime] = None,
    sender_phone_number: Optional[str] = None,
    chat_jid: Optional[str] = None,
    query: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    page: int = 0,
    include_context: bool = True,
    context_before: int = 1,
    context_after: int = 1,
) -> list[MessageView]:
    """
    List messages matching all given filters, newest first.

    Pagination is applied to the matches before context expansion. With
    include_context, each match is expanded to its context window and the
    windows are concatenated in match order; a message already emitted by an
    earlier window is skipped, and the result is not re-sorted across windows.

    Args:
        after / before: Strict timestamp bounds
        sender_phone_number: Exact sender identifier
        chat_jid: Restrict to one chat
        query: Case-insensitive substring of content or media type
        limit / page: Window over the filtered, sorted matches
        include_context: Expand each match with its neighbours
        context_before / context_after: Neighbour counts per match
    """
    logger.info(f"Listing messages: limit={limit}, page={page}, include_context={include_context}")
    logger.debug(
        f"Filters: after={after}, before={before}, sender={sender_phone_number}, "
        f"chat={chat_jid}, q={query}"
    )

    statement = messages_select()
    if after is not None:
        statement = statement.where(Message.timestamp > to_utc_naive(after))
    if before is not None:
        statement = statement.where(Message.timestamp < to_utc_naive(before))
    if sender_phone_number is not None:
        statement = statement.where(Message.sender == sender_phone_number)
    if chat_jid is not None:
        statement = statement.where(Message.chat_jid == chat_jid)
    if query is not None:
        pattern = f"%{query}%"
        statement = statement.where(
            or_(Message.content.ilike(pattern), Message.media_type.ilike(pattern))
        )

    # Ties on timestamp are broken by key so consecutive pages never overlap
    statement = statement.order_by(
        Message.timestamp.desc(), Message.chat_jid.desc(), Message.id.desc()
    )
    rows = _fetch_all(db, _page(statement, limit, page), "list messages")
    cache = build_identity_cache(db, contacts_db)

    if not include_context:
        return [project_message(row, cache) for row in rows]

    result: list[MessageView] = []
    seen: set[str] = set()
    for row in rows:
        try:
            window = window_rows(db, row.id, context_before, context_after, chat_jid=row.chat_jid)
        except (NotFoundError, StorageError) as e:
            logger.warning(f"Skipping context for message {row.id}: {e}")
            record_context_expansion_failure()
            continue
        for neighbour in window:
            if neighbour.id in seen:
                continue
            seen.add(neighbour.id)
            result.append(project_message(neighbour, cache))

    logger.info(f"Listed {len(rows)} matches expanded to {len(result)} messages")
    return result


def get_message_context(
    db: Session,
    message_id: str,
    contacts_db: Optional[Session] = None,
    before: Optional[int] = None,
    after: Optional[int] = None,
) -> MessageContext:
    """Return a message with up to `before`/`after` neighbours (default 5 each)."""
    logger.info(f"Getting context for message {message_id}: before={before}, after={after}")
    cache = build_identity_cache(db, contacts_db)
    return context_window(db, message_id, cache, before=before, after=after)


def get_last_interaction(db: Session, jid: str, contacts_db: Optional[Session] = None) -> MessageView:
    """Most recent message sent by `jid` or in the chat keyed by `jid`."""
    row = _fetch_first(
        db,
        messages_select()
        .where(or_(Message.sender == jid, Message.chat_jid == jid))
        .order_by(Message.timestamp.desc()),
        "get last interaction",
    )
    if row is None:
        raise NotFoundError("interaction", jid)
    return project_message(row, build_identity_cache(db, contacts_db))


# =============================================================================
# Chats
# =============================================================================

def list_chats(
    db: Session,
    contacts_db: Optional[Session] = None,
    query: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    page: int = 0,
    include_last_message: bool = True,
    sort_by: ChatSort = "last_active",
) -> list[ChatView]:
    """
    List chats whose name or JID contains `query` (case-insensitive).

    sort_by="last_active" orders by last activity, newest first, chats without
    activity last; sort_by="name" orders by name ascending.
    """
    logger.info(f"Listing chats: limit={limit}, page={page}, sort_by={sort_by}, q={query}")

    statement = _chats_select(include_last_message)
    if query is not None:
        pattern = f"%{query}%"
        statement = statement.where(or_(Chat.name.ilike(pattern), Chat.jid.ilike(pattern)))

    if sort_by == "name":
        statement = statement.order_by(Chat.name.asc(), Chat.jid.asc())
    else:
        statement = statement.order_by(Chat.last_message_time.desc().nulls_last(), Chat.jid.asc())

    rows = _fetch_all(db, _page(statement, limit, page), "list chats")
    cache = build_identity_cache(db, contacts_db)
    return [project_chat(row, cache) for row in rows]


def get_chat(
    db: Session,
    chat_jid: str,
    contacts_db: Optional[Session] = None,
    include_last_message: bool = True,
) -> ChatView:
    row = _fetch_first(
        db,
        _chats_select(include_last_message).where(Chat.jid == chat_jid),
        "get chat",
    )
    if row is None:
        raise NotFoundError("chat", chat_jid)
    return project_chat(row, build_identity_cache(db, contacts_db))


def get_direct_chat_by_contact(
    db: Session,
    phone_number: str,
    contacts_db: Optional[Session] = None,
) -> ChatView:
    """First non-group chat (storage order) whose JID contains `phone_number`."""
    row = _fetch_first(
        db,
        _chats_select(True).where(
            Chat.jid.like(f"%{phone_number}%"),
            Chat.jid.notlike(f"%{GROUP_SUFFIX}"),
        ),
        "get direct chat",
    )
    if row is None:
        raise NotFoundError("direct chat", phone_number)
    return project_chat(row, build_identity_cache(db, contacts_db))


def get_contact_chats(
    db: Session,
    jid: str,
    contacts_db: Optional[Session] = None,
    limit: int = DEFAULT_LIMIT,
    page: int = 0,
) -> list[ChatView]:
    """Chats keyed by `jid` or in which `jid` has sent at least one message."""
    sent = aliased(Message, name="sent")
    has_sent_here = (
        select(sent.id)
        .where(sent.chat_jid == Chat.jid, sent.sender == jid)
        .correlate(Chat)
        .exists()
    )
    statement = (
        _chats_select(True)
        .where(or_(Chat.jid == jid, has_sent_here))
        .order_by(Chat.last_message_time.desc().nulls_last(), Chat.jid.asc())
    )
    rows = _fetch_all(db, _page(statement, limit, page), "get contact chats")
    cache = build_identity_cache(db, contacts_db)
    return [project_chat(row, cache) for row in rows]


# =============================================================================
# Contacts
# =============================================================================

def search_contacts(db: Session, query: str) -> list[ContactView]:
    """Non-group chats whose name or JID contains `query`, by name then JID, at most 50."""
    pattern = f"%{query}%"
    rows = _fetch_all(
        db,
        select(Chat.jid, Chat.name)
        .where(
            or_(Chat.name.ilike(pattern), Chat.jid.ilike(pattern)),
            Chat.jid.notlike(f"%{GROUP_SUFFIX}"),
        )
        .distinct()
        .order_by(Chat.name, Chat.jid)
        .limit(CONTACT_SEARCH_LIMIT),
        "search contacts",
    )
    return [project_contact(row.jid, row.name) for row in rows]
