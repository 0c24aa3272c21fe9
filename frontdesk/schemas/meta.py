from typing import Optional

from pydantic import BaseModel

from frontdesk.schemas.inbound import Channel


class RawMetaEvent(BaseModel):
    """A single text message pulled out of a Meta webhook body, before tenant lookup."""

    channel: Channel
    platform_id: str  # phone_number_id (WhatsApp) or page / account id
    sender_id: str
    text: str
    platform_message_id: Optional[str] = None
    timestamp: Optional[int] = None
    sender_name: Optional[str] = None


class MetaWebhookAck(BaseModel):
    status: str = "EVENT_RECEIVED"
    queued: int = 0
    duplicates: int = 0
