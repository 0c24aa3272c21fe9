from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from frontdesk.logging_config import get_logger
from frontdesk.schemas.inbound import Channel
from frontdesk.services.alert_service import alert_critical, alert_error
from frontdesk.services.crypto_service import CredentialCipher, CredentialCipherError
from frontdesk.services.integration_service import find_for_business
from frontdesk.services.meta_service import MetaSendError, MetaTransport

logger = get_logger("dispatch_service")

CHANNEL_CEILINGS = {
    Channel.WHATSAPP: 1600,
    Channel.INSTAGRAM: 1600,
    Channel.FACEBOOK: 2000,
}
ELLIPSIS = "..."


def format_for_channel(content: str, channel: Union[Channel, str]) -> str:
    """Fit the reply to the channel's length ceiling. WEBCHAT and VOICE are unbounded."""
    ceiling = CHANNEL_CEILINGS.get(Channel(channel))
    if ceiling is None or len(content) <= ceiling:
        return content
    return content[: ceiling - len(ELLIPSIS)] + ELLIPSIS


@dataclass
class DeliveryResult:
    ok: bool
    channel: Channel
    content: str
    error: Optional[str] = None

    def as_metadata(self) -> dict:
        return {"delivered": self.ok, "channel": self.channel.value, "error": self.error}


class Dispatcher:
    def __init__(self, transport: MetaTransport, cipher: Optional[CredentialCipher]):
        self.transport = transport
        self.cipher = cipher

    def send(
        self,
        db: Session,
        business_id: UUID,
        channel: Union[Channel, str],
        destination: str,
        content: str,
    ) -> DeliveryResult:
        """Deliver a reply. Failures are reported in the result and never raised."""
        channel = Channel(channel)
        text = format_for_channel(content, channel)
        if channel in (Channel.WEBCHAT, Channel.VOICE):
            return DeliveryResult(ok=True, channel=channel, content=text)

        context = {"business_id": str(business_id), "channel": channel.value}
        integration = find_for_business(db, business_id, channel)
        if integration is None:
            logger.error("No active integration for channel", extra={"context": context})
            alert_critical("Reply not delivered: channel not connected", context)
            return DeliveryResult(ok=False, channel=channel, content=text, error="integration_missing")
        if self.cipher is None:
            logger.error("ENCRYPTION_KEY not configured, cannot decrypt channel token", extra={"context": context})
            alert_critical("Reply not delivered: encryption key missing", context)
            return DeliveryResult(ok=False, channel=channel, content=text, error="credentials_unavailable")

        try:
            token = self.cipher.decrypt(integration.access_token)
        except CredentialCipherError as e:
            logger.error(f"Channel token could not be decrypted: {e}", extra={"context": context})
            alert_critical("Reply not delivered: channel token unreadable", context)
            return DeliveryResult(ok=False, channel=channel, content=text, error="credentials_unavailable")

        try:
            if channel == Channel.WHATSAPP:
                self.transport.send_whatsapp(token, integration.platform_id, destination, text)
            else:
                self.transport.send_messenger(token, integration.platform_id, destination, text)
        except MetaSendError as e:
            logger.error(f"Delivery failed: {e}", extra={"context": context})
            alert_error("Reply delivery failed", {**context, "status": e.status_code})
            return DeliveryResult(ok=False, channel=channel, content=text, error=str(e))

        logger.info("Reply delivered", extra={"context": context})
        return DeliveryResult(ok=True, channel=channel, content=text)
