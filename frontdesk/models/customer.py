import uuid

from sqlalchemy import Column, ForeignKey, Index, Integer, Text, Uuid, text
from sqlalchemy.orm import relationship

from frontdesk.database import Base, UTCDateTime, utcnow


def _channel_id_index(field: str) -> Index:
    where = text(f"{field} IS NOT NULL")
    return Index(
        f"uq_customers_business_{field}",
        "business_id",
        field,
        unique=True,
        postgresql_where=where,
        sqlite_where=where,
    )


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        _channel_id_index("whatsapp_id"),
        _channel_id_index("instagram_id"),
        _channel_id_index("facebook_id"),
        Index("ix_customers_business_phone", "business_id", "phone"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(Uuid(as_uuid=True), ForeignKey("businesses.id"), nullable=False)
    name = Column(Text)
    phone = Column(Text)
    email = Column(Text)
    whatsapp_id = Column(Text)
    instagram_id = Column(Text)
    facebook_id = Column(Text)
    notes = Column(Text)
    visit_count = Column(Integer, nullable=False, default=0)
    last_contact_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    conversations = relationship("Conversation", back_populates="customer")
    appointments = relationship("Appointment", back_populates="customer")
