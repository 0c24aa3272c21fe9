import uuid

from sqlalchemy import Column, ForeignKey, Index, Text, Uuid, text
from sqlalchemy.orm import relationship

from frontdesk.database import Base, JSONType, UTCDateTime, utcnow

_HAS_PLATFORM_ID = text("platform_message_id IS NOT NULL")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index(
            "uq_messages_platform_message_id",
            "business_id",
            "channel",
            "platform_message_id",
            unique=True,
            postgresql_where=_HAS_PLATFORM_ID,
            sqlite_where=_HAS_PLATFORM_ID,
        ),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=False)
    business_id = Column(Uuid(as_uuid=True), nullable=False)
    channel = Column(Text, nullable=False)
    role = Column(Text, nullable=False)  # USER, ASSISTANT, SYSTEM, HUMAN
    content = Column(Text, nullable=False)
    platform_message_id = Column(Text)
    message_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
