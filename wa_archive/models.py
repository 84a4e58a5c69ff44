"""
SQLAlchemy table definitions.

Chat and Message belong to the archive database and are created by init_db().
The whatsmeow_* tables live in the protocol client's contact directory; they
are declared on a separate MetaData so the archive never creates or writes
them. For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
)

from wa_archive.storage import Base


class Chat(Base):
    """
    A direct or group conversation.

    Table: chats
    Primary Key: jid
    """
    __tablename__ = "chats"

    jid = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    # Timestamp of the latest message at ingestion time; never recomputed
    last_message_time = Column(DateTime, nullable=True, index=True)


class Message(Base):
    """
    A stored message with its optional media descriptor.

    Table: messages
    Primary Key: (id, chat_jid), re-ingestion replaces the row
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    chat_jid = Column(String, ForeignKey("chats.jid"), primary_key=True, index=True)
    sender = Column(String, nullable=True, index=True)
    content = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    is_from_me = Column(Boolean, nullable=False, default=False)

    # Media descriptor, stored verbatim
    media_type = Column(String, nullable=True)
    filename = Column(String, nullable=True)
    url = Column(String, nullable=True)
    media_key = Column(LargeBinary, nullable=True)
    file_sha256 = Column(LargeBinary, nullable=True)
    file_enc_sha256 = Column(LargeBinary, nullable=True)
    file_length = Column(Integer, nullable=True)


directory_metadata = MetaData()

contacts_table = Table(
    "whatsmeow_contacts",
    directory_metadata,
    Column("our_jid", String),
    Column("their_jid", String),
    Column("first_name", String),
    Column("full_name", String),
    Column("push_name", String),
    Column("business_name", String),
)

lid_map_table = Table(
    "whatsmeow_lid_map",
    directory_metadata,
    Column("lid", String, primary_key=True),
    Column("pn", String),
)
