"""
Row projection: raw query rows -> view models.

Every message and chat query selects the column sets defined here, so the
projector can rely on the same attribute names whatever query produced the row.
"""

from typing import Optional

from sqlalchemy import null

from wa_archive.identity import IdentityCache
from wa_archive.models import Chat, Message
from wa_archive.schemas import ChatView, ContactView, MessageView
from wa_archive.utils import is_group_jid, local_part

ME = "Me"

MESSAGE_COLUMNS = (
    Message.id,
    Message.timestamp,
    Message.sender,
    Message.content,
    Message.is_from_me,
    Message.chat_jid,
    Chat.name.label("chat_name"),
    Message.media_type,
)


def chat_columns(include_last_message: bool = True) -> tuple:
    """Columns for chat queries; the last_* columns are NULL when no message is joined."""
    if include_last_message:
        last = (
            Message.content.label("last_message"),
            Message.sender.label("last_sender"),
            Message.is_from_me.label("last_is_from_me"),
        )
    else:
        last = (
            null().label("last_message"),
            null().label("last_sender"),
            null().label("last_is_from_me"),
        )
    return (Chat.jid, Chat.name, Chat.last_message_time) + last


def resolve_sender(sender_jid: str, cache: IdentityCache) -> str:
    """Look up the full identifier, then its local-part, else return it unresolved."""
    name = cache.get(sender_jid)
    if name is not None:
        return name
    if "@" in sender_jid:
        name = cache.get(local_part(sender_jid))
        if name is not None:
            return name
    return sender_jid


def resolve_message_sender(sender_jid: Optional[str], is_from_me: bool, cache: IdentityCache) -> str:
    if is_from_me:
        return ME
    return resolve_sender(sender_jid or "", cache)


def _non_empty(value: Optional[str]) -> Optional[str]:
    return value if value else None


def project_message(row, cache: IdentityCache) -> MessageView:
    is_from_me = bool(row.is_from_me)
    return MessageView(
        id=row.id,
        timestamp=row.timestamp,
        sender=resolve_message_sender(row.sender, is_from_me, cache),
        sender_jid=row.sender or "",
        content=row.content or "",
        is_from_me=is_from_me,
        chat_jid=row.chat_jid,
        chat_name=_non_empty(row.chat_name),
        media_type=_non_empty(row.media_type),
    )


def project_chat(row, cache: IdentityCache) -> ChatView:
    last_sender = None
    if row.last_sender is not None:
        last_sender = resolve_message_sender(row.last_sender, bool(row.last_is_from_me), cache)

    return ChatView(
        jid=row.jid,
        name=_non_empty(row.name),
        is_group=is_group_jid(row.jid),
        last_message_time=row.last_message_time,
        last_message=_non_empty(row.last_message),
        last_sender=last_sender,
        last_is_from_me=None if row.last_is_from_me is None else bool(row.last_is_from_me),
    )


def project_contact(jid: str, name: Optional[str]) -> ContactView:
    return ContactView(phone_number=local_part(jid), name=name, jid=jid)
