"""
Pydantic schemas for the archive.

This module contains:
- View models returned by the query engine (messages, chats, contacts)
- The media descriptor stored verbatim with a message
- Ingestion payloads delivered by the protocol client
- Small HTTP response models
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Query Views
# =============================================================================

class MessageView(BaseModel):
    """
    A stored message with its sender resolved to a display name.
    Optional fields are None when the underlying column was null or empty.
    """
    id: str = Field(..., description="Message identifier (unique within its chat)")
    timestamp: datetime = Field(..., description="Message time (UTC)")
    sender: str = Field(..., description="Resolved display name, 'Me' for own messages")
    sender_jid: str = Field(..., description="Raw sender identifier")
    content: str = Field("", description="Text content, empty for media-only messages")
    is_from_me: bool = Field(False)
    chat_jid: str = Field(...)
    chat_name: Optional[str] = Field(None)
    media_type: Optional[str] = Field(None, description="image, video, audio or document")


class ChatView(BaseModel):
    """A chat with, optionally, the message that matches its last activity time."""
    jid: str = Field(...)
    name: Optional[str] = Field(None)
    is_group: bool = Field(False)
    last_message_time: Optional[datetime] = Field(None)
    last_message: Optional[str] = Field(None)
    last_sender: Optional[str] = Field(None, description="Resolved display name of the last sender")
    last_is_from_me: Optional[bool] = Field(None)


class ContactView(BaseModel):
    phone_number: str = Field(..., description="Local-part of the JID")
    name: Optional[str] = Field(None)
    jid: str = Field(...)


class MessageContext(BaseModel):
    """A target message with its chronological neighbours in the same chat."""
    message: MessageView
    before: list[MessageView] = Field(default_factory=list)
    after: list[MessageView] = Field(default_factory=list)


# =============================================================================
# Media Descriptor
# =============================================================================

class MediaDescriptor(BaseModel):
    """
    Everything needed to fetch and decrypt an attachment later.
    The archive stores and returns it without validation; bytes travel as base64 in JSON.
    """
    media_type: str = Field(..., min_length=1, description="image, video, audio or document")
    filename: Optional[str] = Field(None)
    url: Optional[str] = Field(None)
    media_key: Optional[bytes] = Field(None)
    file_sha256: Optional[bytes] = Field(None)
    file_enc_sha256: Optional[bytes] = Field(None)
    file_length: Optional[int] = Field(None, ge=0)

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")


# =============================================================================
# Ingestion Payloads
# =============================================================================

class MessageBody(BaseModel):
    """
    The content part of a protocol message: plain conversation text,
    extended (quoted/linked) text, and an optional attachment.
    """
    conversation: Optional[str] = Field(None, description="Plain text body")
    extended_text: Optional[str] = Field(None, description="Extended text message body")
    media: Optional[MediaDescriptor] = Field(None)

    def text_content(self) -> str:
        if self.conversation:
            return self.conversation
        return self.extended_text or ""


class MessageEvent(MessageBody):
    """A live message event."""
    id: str = Field(..., min_length=1)
    chat_jid: str = Field(..., min_length=1)
    sender: str = Field(..., description="Sender user part")
    timestamp: datetime = Field(...)
    is_from_me: bool = Field(False)
    group_name: Optional[str] = Field(None, description="Group subject, when the client knows it")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "3EB0C767D26A1D2D",
                    "chat_jid": "111@s.whatsapp.net",
                    "sender": "111",
                    "timestamp": "2025-01-15T10:00:00Z",
                    "is_from_me": False,
                    "conversation": "hi",
                }
            ]
        }
    }


class HistoryMessage(MessageBody):
    """One message inside a history-sync conversation; every field may be missing."""
    id: Optional[str] = Field(None)
    timestamp: Optional[int] = Field(None, description="Unix seconds, 0 or missing means undated")
    from_me: Optional[bool] = Field(None)
    participant: Optional[str] = Field(None, description="Sender in group chats")


class HistoryConversation(BaseModel):
    id: Optional[str] = Field(None, description="Chat JID")
    display_name: Optional[str] = Field(None)
    name: Optional[str] = Field(None)
    group_name: Optional[str] = Field(None)
    # Newest message first, as delivered by the protocol
    messages: list[HistoryMessage] = Field(default_factory=list)


class HistorySyncBatch(BaseModel):
    own_user: str = Field(..., description="User part of the account's own JID")
    conversations: list[HistoryConversation] = Field(default_factory=list)


# =============================================================================
# HTTP Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    status: str = Field(default="ok")
    stored: int = Field(default=0, ge=0, description="Messages written by this request")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
