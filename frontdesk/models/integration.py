import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from frontdesk.database import Base, UTCDateTime, utcnow


class Integration(Base):
    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("business_id", "type", "platform_id", name="uq_integrations_account"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid(as_uuid=True), ForeignKey("businesses.id"), nullable=False)
    type = Column(Text, nullable=False)  # WHATSAPP, INSTAGRAM, FACEBOOK
    platform_id = Column(Text, nullable=False)  # phone_number_id or page id
    access_token = Column(Text, nullable=False)  # encrypted, iv:tag:ciphertext
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    business = relationship("Business", back_populates="integrations")
