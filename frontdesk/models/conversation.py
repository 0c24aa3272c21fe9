import uuid

from sqlalchemy import Column, ForeignKey, Index, Text, Uuid, text
from sqlalchemy.orm import relationship

from frontdesk.database import Base, UTCDateTime, utcnow

_ACTIVE_ONLY = text("status = 'ACTIVE'")
_HAS_CALL_ID = text("call_id IS NOT NULL")


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index(
            "uq_conversations_one_active",
            "business_id",
            "customer_id",
            "channel",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index(
            "ix_conversations_call_id",
            "business_id",
            "call_id",
            postgresql_where=_HAS_CALL_ID,
            sqlite_where=_HAS_CALL_ID,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid(as_uuid=True), ForeignKey("businesses.id"), nullable=False)
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    channel = Column(Text, nullable=False)  # WEBCHAT, WHATSAPP, INSTAGRAM, FACEBOOK, VOICE
    status = Column(Text, nullable=False, default="ACTIVE")  # ACTIVE, RESOLVED, ESCALATED, ABANDONED
    escalate_reason = Column(Text)
    assigned_user_id = Column(Text)
    call_id = Column(Text)  # telephony call id, VOICE only
    started_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_message_at = Column(UTCDateTime)
    escalated_at = Column(UTCDateTime)
    resolved_at = Column(UTCDateTime)

    customer = relationship("Customer", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
    appointments = relationship("Appointment", back_populates="conversation")
