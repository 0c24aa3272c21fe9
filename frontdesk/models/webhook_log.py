import uuid

from sqlalchemy import Boolean, Column, Text, Uuid

from frontdesk.database import Base, JSONType, UTCDateTime, utcnow


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source = Column(Text, nullable=False)  # meta, voice
    event = Column(Text)
    payload = Column(JSONType)
    raw_body = Column(Text, nullable=False)
    signature_valid = Column(Boolean, nullable=False)
    received_at = Column(UTCDateTime, nullable=False, default=utcnow)
