import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text, UniqueConstraint, Uuid

from frontdesk.database import Base, JSONType, UTCDateTime, utcnow


class InboundJob(Base):
    __tablename__ = "inbound_jobs"
    __table_args__ = (
        UniqueConstraint("business_id", "channel", "platform_message_id", name="uq_inbound_jobs_platform_message"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid(as_uuid=True), ForeignKey("businesses.id"), nullable=False)
    channel = Column(Text, nullable=False)
    platform_message_id = Column(Text, nullable=False)
    payload_json = Column(JSONType, nullable=False)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, PROCESSING, DONE, FAILED, DUPLICATE
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(UTCDateTime)
    last_error = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)
