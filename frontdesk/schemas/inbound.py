from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class Channel(str, Enum):
    WEBCHAT = "WEBCHAT"
    WHATSAPP = "WHATSAPP"
    INSTAGRAM = "INSTAGRAM"
    FACEBOOK = "FACEBOOK"
    VOICE = "VOICE"


# Customer column that carries the sender id for each channel. WEBCHAT has none.
CHANNEL_ID_FIELDS = {
    Channel.WHATSAPP: "whatsapp_id",
    Channel.INSTAGRAM: "instagram_id",
    Channel.FACEBOOK: "facebook_id",
    Channel.VOICE: "phone",
}


class IngressOutcome(str, Enum):
    ACCEPTED = "ACCEPTED"
    INVALID = "INVALID"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    DUPLICATE = "DUPLICATE"


class CustomerHints(BaseModel):
    phone: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class InboundMessage(BaseModel):
    """Channel-independent inbound message."""

    business_id: UUID
    channel: Channel
    channel_sender_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    platform_message_id: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    hints: CustomerHints = Field(default_factory=CustomerHints)
