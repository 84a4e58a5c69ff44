"""
Write side of the archive.

The protocol client delivers live message events and history-sync batches;
both end up as idempotent upserts into chats and messages. Each upsert is a
single INSERT ... ON CONFLICT statement committed on its own, so readers never
observe a half-written row.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wa_archive.errors import NotFoundError, StorageError
from wa_archive.identity import lookup_contact_full_name
from wa_archive.models import Chat, Message
from wa_archive.schemas import HistorySyncBatch, MediaDescriptor, MessageEvent
from wa_archive.utils import from_unix, is_group_jid, local_part, to_utc_naive

logger = logging.getLogger(__name__)

MEDIA_COLUMNS = (
    "media_type",
    "filename",
    "url",
    "media_key",
    "file_sha256",
    "file_enc_sha256",
    "file_length",
)


@dataclass(frozen=True)
class ConversationNames:
    """The two name fields a history-sync conversation may carry."""
    display_name: Optional[str] = None
    name: Optional[str] = None

    def preferred(self) -> Optional[str]:
        return self.display_name or self.name or None


# =============================================================================
# Upserts
# =============================================================================

def upsert_chat(db: Session, jid: str, name: Optional[str], last_message_time: Optional[datetime]) -> None:
    """Insert or update a chat, always overwriting name and last activity time."""
    values = {"jid": jid, "name": name, "last_message_time": to_utc_naive(last_message_time)}
    statement = insert(Chat).values(**values)
    statement = statement.on_conflict_do_update(
        index_elements=["jid"],
        set_={"name": statement.excluded.name, "last_message_time": statement.excluded.last_message_time},
    )
    try:
        db.execute(statement)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store chat {jid}: {e}")
        raise StorageError("upsert chat", e) from e
    logger.debug(f"Chat stored: {jid}")


def upsert_message(
    db: Session,
    message_id: str,
    chat_jid: str,
    sender: str,
    content: Optional[str],
    timestamp: datetime,
    is_from_me: bool,
    media: Optional[MediaDescriptor] = None,
) -> bool:
    """
    Insert or replace a message keyed by (message_id, chat_jid).

    Returns:
        False when the message has neither text nor media and was not stored,
        True otherwise.
    """
    media_type = media.media_type if media is not None else ""
    if not content and not media_type:
        logger.debug(f"Skipping empty message {message_id} in {chat_jid}")
        return False

    values = {
        "id": message_id,
        "chat_jid": chat_jid,
        "sender": sender,
        "content": content or "",
        "timestamp": to_utc_naive(timestamp),
        "is_from_me": is_from_me,
    }
    # All-or-nothing: a replaced row never keeps a stale descriptor
    for column in MEDIA_COLUMNS:
        values[column] = getattr(media, column) if media is not None else None

    statement = insert(Message).values(**values)
    statement = statement.on_conflict_do_update(
        index_elements=["id", "chat_jid"],
        set_={key: statement.excluded[key] for key in values if key not in ("id", "chat_jid")},
    )
    try:
        db.execute(statement)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store message {message_id}: {e}")
        raise StorageError("upsert message", e) from e

    logger.debug(f"Message stored: {message_id} in {chat_jid}")
    return True


def get_media_descriptor(db: Session, message_id: str, chat_jid: str) -> MediaDescriptor:
    """Return the stored media descriptor verbatim; NotFoundError if the message has none."""
    try:
        row = db.execute(
            select(*(getattr(Message, column) for column in MEDIA_COLUMNS))
            .where(Message.id == message_id, Message.chat_jid == chat_jid)
        ).first()
    except SQLAlchemyError as e:
        raise StorageError("get media descriptor", e) from e

    if row is None or not row.media_type:
        raise NotFoundError("media", f"{chat_jid}/{message_id}")
    return MediaDescriptor(**row._asdict())


# =============================================================================
# Chat names
# =============================================================================

def resolve_chat_name(
    db: Session,
    chat_jid: str,
    contacts_db: Optional[Session] = None,
    conversation: Optional[ConversationNames] = None,
    sender: Optional[str] = None,
    group_name: Optional[str] = None,
) -> str:
    """
    Pick the display name to store for a chat.

    A name already stored wins. Groups then use the conversation's names, the
    group subject, and finally "Group <id>". Direct chats use the contact's
    full name, then the sender, then the JID's user part.
    """
    try:
        existing = db.execute(select(Chat.name).where(Chat.jid == chat_jid)).scalar()
    except SQLAlchemyError as e:
        raise StorageError("resolve chat name", e) from e
    if existing:
        return existing

    user = local_part(chat_jid)
    if is_group_jid(chat_jid):
        name = conversation.preferred() if conversation is not None else None
        return name or group_name or f"Group {user}"

    return lookup_contact_full_name(contacts_db, chat_jid) or sender or user


# =============================================================================
# Protocol events
# =============================================================================

def ingest_message_event(db: Session, event: MessageEvent, contacts_db: Optional[Session] = None) -> bool:
    """
    Store a live message. The chat is upserted even when the message itself
    carries nothing worth keeping.

    Returns:
        True if the message was stored
    """
    name = resolve_chat_name(
        db, event.chat_jid, contacts_db, sender=event.sender, group_name=event.group_name
    )
    upsert_chat(db, event.chat_jid, name, event.timestamp)

    stored = upsert_message(
        db,
        message_id=event.id,
        chat_jid=event.chat_jid,
        sender=event.sender,
        content=event.text_content(),
        timestamp=event.timestamp,
        is_from_me=event.is_from_me,
        media=event.media,
    )
    direction = "->" if event.is_from_me else "<-"
    kind = f"[{event.media.media_type}] " if event.media is not None else ""
    logger.info(f"{direction} {event.sender} in {event.chat_jid}: {kind}stored={stored}")
    return stored


def ingest_history_sync(db: Session, batch: HistorySyncBatch, contacts_db: Optional[Session] = None) -> int:
    """
    Store a history-sync batch.

    Conversations without an id, without messages, or whose newest message is
    undated are skipped. Storage failures on individual messages are logged and
    do not stop the batch.

    Returns:
        Number of messages stored
    """
    logger.info(f"History sync: {len(batch.conversations)} conversations")
    synced = 0

    for conversation in batch.conversations:
        if not conversation.id or not conversation.messages:
            continue
        chat_jid = conversation.id
        user = local_part(chat_jid)

        # Messages arrive newest first
        latest = conversation.messages[0]
        if not latest.timestamp:
            continue

        names = ConversationNames(display_name=conversation.display_name, name=conversation.name)
        name = resolve_chat_name(
            db, chat_jid, contacts_db, conversation=names, group_name=conversation.group_name
        )
        upsert_chat(db, chat_jid, name, from_unix(latest.timestamp))

        for message in conversation.messages:
            if not message.timestamp:
                continue
            content = message.text_content()
            if not content and message.media is None:
                continue

            is_from_me = bool(message.from_me)
            if not is_from_me and message.participant:
                sender = message.participant
            elif is_from_me:
                sender = batch.own_user
            else:
                sender = user

            try:
                stored = upsert_message(
                    db,
                    message_id=message.id or "",
                    chat_jid=chat_jid,
                    sender=sender,
                    content=content,
                    timestamp=from_unix(message.timestamp),
                    is_from_me=is_from_me,
                    media=message.media,
                )
            except StorageError as e:
                logger.warning(f"Failed to store history message in {chat_jid}: {e}")
                continue
            if stored:
                synced += 1

    logger.info(f"History sync complete. Stored {synced} messages.")
    return synced
