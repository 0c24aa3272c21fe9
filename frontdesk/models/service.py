import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, Numeric, Text, Uuid
from sqlalchemy.orm import relationship

from frontdesk.database import Base, UTCDateTime, utcnow


class Service(Base):
    __tablename__ = "services"
    __table_args__ = (CheckConstraint("duration_minutes >= 15", name="ck_services_min_duration"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid(as_uuid=True), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    category = Column(Text)
    duration_minutes = Column(Integer, nullable=False, default=60)
    price = Column(Numeric(10, 2))
    is_bookable = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    business = relationship("Business", back_populates="services")
