"""
Context windows: the messages chronologically adjacent to a target message
within the same chat.

Neighbours are strictly earlier / strictly later than the target's timestamp.
Messages sharing the target's timestamp are excluded, and ties among
neighbours follow the storage engine's row order.
"""

import logging
from typing import Optional

from sqlalchemy import Select, select
from sqlalchemy.engine import Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wa_archive.errors import NotFoundError, StorageError
from wa_archive.identity import IdentityCache
from wa_archive.models import Chat, Message
from wa_archive.projector import MESSAGE_COLUMNS, project_message
from wa_archive.schemas import MessageContext

logger = logging.getLogger(__name__)

DEFAULT_BEFORE = 5
DEFAULT_AFTER = 5


def messages_select() -> Select:
    """Base SELECT for message rows, joined with their chat for the chat name."""
    return select(*MESSAGE_COLUMNS).join(Chat, Message.chat_jid == Chat.jid)


def _fetch_target(db: Session, message_id: str, chat_jid: Optional[str]) -> Row:
    statement = messages_select().where(Message.id == message_id)
    if chat_jid is not None:
        statement = statement.where(Message.chat_jid == chat_jid)
    row = db.execute(statement.limit(1)).first()
    if row is None:
        raise NotFoundError("message", message_id)
    return row


def _neighbours(db: Session, target: Row, before: int, after: int) -> tuple[list[Row], list[Row]]:
    earlier = db.execute(
        messages_select()
        .where(Message.chat_jid == target.chat_jid, Message.timestamp < target.timestamp)
        .order_by(Message.timestamp.desc())
        .limit(before)
    ).all()
    later = db.execute(
        messages_select()
        .where(Message.chat_jid == target.chat_jid, Message.timestamp > target.timestamp)
        .order_by(Message.timestamp.asc())
        .limit(after)
    ).all()
    # Nearest-first -> chronological
    return list(reversed(earlier)), list(later)


def _window(
    db: Session, message_id: str, before: int, after: int, chat_jid: Optional[str]
) -> tuple[list[Row], Row, list[Row]]:
    try:
        target = _fetch_target(db, message_id, chat_jid)
        earlier, later = _neighbours(db, target, before, after)
    except SQLAlchemyError as e:
        raise StorageError("message context", e) from e
    return earlier, target, later


def window_rows(
    db: Session,
    message_id: str,
    before: int,
    after: int,
    chat_jid: Optional[str] = None,
) -> list[Row]:
    """
    Return before + target + after as raw rows, in chronological order.

    Raises:
        NotFoundError: the target message does not exist
        StorageError: a query failed
    """
    earlier, target, later = _window(db, message_id, before, after, chat_jid)
    return earlier + [target] + later


def context_window(
    db: Session,
    message_id: str,
    cache: IdentityCache,
    before: Optional[int] = None,
    after: Optional[int] = None,
    chat_jid: Optional[str] = None,
) -> MessageContext:
    """
    Assemble the context window around a message.

    Args:
        db: Archive session
        message_id: Target message id
        cache: Identity cache used to resolve senders
        before: Number of earlier messages (default 5)
        after: Number of later messages (default 5)
        chat_jid: Narrow the target lookup to one chat

    Returns:
        MessageContext with `before` and `after` in ascending time order
    """
    before = DEFAULT_BEFORE if before is None else before
    after = DEFAULT_AFTER if after is None else after

    earlier, target, later = _window(db, message_id, before, after, chat_jid)
    logger.debug(f"Context for {message_id}: {len(earlier)} before, {len(later)} after")

    return MessageContext(
        message=project_message(target, cache),
        before=[project_message(row, cache) for row in earlier],
        after=[project_message(row, cache) for row in later],
    )
