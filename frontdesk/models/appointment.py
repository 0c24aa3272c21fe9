import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from frontdesk.database import Base, UTCDateTime, utcnow


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("duration >= 15", name="ck_appointments_min_duration"),
        Index("ix_appointments_business_start", "business_id", "start_time"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid(as_uuid=True), ForeignKey("businesses.id"), nullable=False)
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    conversation_id = Column(Uuid(as_uuid=True), ForeignKey("conversations.id"))
    service_id = Column(Uuid(as_uuid=True), ForeignKey("services.id"))
    service_name = Column(Text, nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    timezone = Column(Text, nullable=False, default="America/New_York")
    status = Column(Text, nullable=False, default="SCHEDULED")  # SCHEDULED, CONFIRMED, COMPLETED, CANCELED, NO_SHOW
    notes = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    customer = relationship("Customer", back_populates="appointments")
    conversation = relationship("Conversation", back_populates="appointments")
