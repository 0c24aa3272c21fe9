import uuid

from sqlalchemy import Column, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from frontdesk.database import Base, JSONType, UTCDateTime, utcnow


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    industry = Column(Text, nullable=False, default="OTHER")  # MEDSPA, SALON, DENTAL, FITNESS, ...
    phone = Column(Text)
    email = Column(Text)
    address = Column(Text)
    website = Column(Text)
    timezone = Column(Text, nullable=False, default="America/New_York")
    business_hours = Column(JSONType, nullable=False, default=dict)  # {"monday": {"open": "09:00", "close": "17:00"}}
    services_text = Column(Text)
    ai_personality = Column(Text)
    ai_greeting = Column(Text)
    ai_instructions = Column(Text)
    ai_tone = Column(Text)
    ai_response_length = Column(Text, default="moderate")  # brief, moderate, detailed
    ai_fallback_message = Column(Text)
    ai_escalation_keywords = Column(Text)  # comma-separated
    monthly_interactions = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    services = relationship("Service", back_populates="business")
    integrations = relationship("Integration", back_populates="business")
