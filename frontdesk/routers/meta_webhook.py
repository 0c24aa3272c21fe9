from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.database import get_db
from frontdesk.logging_config import get_logger
from frontdesk.schemas.inbound import IngressOutcome
from frontdesk.schemas.meta import MetaWebhookAck
from frontdesk.services.alert_service import alert_error
from frontdesk.services.errors import InvalidPayloadError
from frontdesk.services.ingress_service import (
    decode_json,
    enqueue_inbound,
    normalize_meta_events,
    parse_meta_payload,
    record_webhook,
    verify_meta_signature,
)

logger = get_logger("meta_webhook")

router = APIRouter(prefix="/webhooks/meta", tags=["webhooks"])


@router.get("", response_class=PlainTextResponse)
def verify_subscription(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    """Meta subscription handshake."""
    expected = settings.meta_webhook_verify_token
    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info("Meta webhook verified")
        return PlainTextResponse(hub_challenge or "")
    logger.warning("Meta webhook verification failed", extra={"context": {"mode": hub_mode}})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.post("", response_model=MetaWebhookAck)
async def receive_events(request: Request, db: Session = Depends(get_db)):
    """Authenticate, audit, normalize and queue; replies are produced by the inbound worker."""
    raw_body = await request.body()
    signature_valid = verify_meta_signature(
        raw_body, request.headers.get("X-Hub-Signature-256"), settings.meta_app_secret
    )

    try:
        record_webhook(db, "meta", raw_body, signature_valid)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record webhook: {e}")

    if not signature_valid:
        logger.warning(
            "Meta webhook rejected: invalid signature",
            extra={"context": {"outcome": IngressOutcome.UNAUTHENTICATED.value}},
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    ack = MetaWebhookAck()
    try:
        events = parse_meta_payload(decode_json(raw_body))
    except InvalidPayloadError as e:
        logger.warning(
            f"Meta webhook payload invalid: {e}", extra={"context": {"outcome": IngressOutcome.INVALID.value}}
        )
        return ack

    try:
        for message in normalize_meta_events(db, events):
            if enqueue_inbound(db, message):
                ack.queued += 1
            else:
                ack.duplicates += 1
                logger.info(
                    "Inbound message already queued",
                    extra={
                        "context": {
                            "outcome": IngressOutcome.DUPLICATE.value,
                            "platform_message_id": message.platform_message_id,
                        }
                    },
                )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to queue inbound events: {e}")
        alert_error("Inbound events not queued", {"error": str(e)})
        ack.queued = 0

    logger.info(
        "Meta webhook accepted", extra={"context": {"outcome": IngressOutcome.ACCEPTED.value, **ack.model_dump()}}
    )
    return ack
