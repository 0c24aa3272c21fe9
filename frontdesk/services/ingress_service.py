"""Webhook ingress: authentication, audit, parsing and normalization of inbound events."""

import hashlib
import hmac
import json
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from frontdesk.database import dialect_insert, utcnow
from frontdesk.logging_config import get_logger
from frontdesk.models import InboundJob, WebhookLog
from frontdesk.schemas.inbound import Channel, CustomerHints, InboundMessage
from frontdesk.schemas.meta import RawMetaEvent
from frontdesk.services.errors import InvalidPayloadError
from frontdesk.services.integration_service import find_by_platform_id

logger = get_logger("ingress_service")

SIGNATURE_PREFIX = "sha256="
MESSAGING_OBJECTS = {"instagram": Channel.INSTAGRAM, "page": Channel.FACEBOOK}


def verify_meta_signature(raw_body: bytes, header: Optional[str], app_secret: Optional[str]) -> bool:
    """Check X-Hub-Signature-256 (sha256=<hex HMAC of the raw body>)."""
    if not app_secret or not header or not header.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, header[len(SIGNATURE_PREFIX) :].strip().lower())


def verify_voice_secret(header: Optional[str], secret: Optional[str]) -> bool:
    if not secret or not header:
        return False
    return hmac.compare_digest(header.encode("utf-8"), secret.encode("utf-8"))


def decode_json(raw_body: bytes) -> Optional[Any]:
    try:
        return json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


def record_webhook(
    db: Session,
    source: str,
    raw_body: bytes,
    signature_valid: bool,
    event: Optional[str] = None,
) -> WebhookLog:
    """Persist the raw payload for audit. Committed on its own so later failures keep the record."""
    payload = decode_json(raw_body)
    if event is None and isinstance(payload, dict):
        event = payload.get("object") or (payload.get("message") or {}).get("type")
    log = WebhookLog(
        source=source,
        event=event,
        payload=payload,
        raw_body=raw_body.decode("utf-8", errors="replace"),
        signature_valid=signature_valid,
    )
    db.add(log)
    db.commit()
    return log


def _whatsapp_events(entry: dict) -> List[RawMetaEvent]:
    events = []
    for change in entry.get("changes") or []:
        value = change.get("value") or {}
        phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
        if not phone_number_id:
            continue
        names = {
            c.get("wa_id"): (c.get("profile") or {}).get("name")
            for c in value.get("contacts") or []
            if isinstance(c, dict)
        }
        for message in value.get("messages") or []:
            body = (message.get("text") or {}).get("body")
            if message.get("type") != "text" or not body or not message.get("from"):
                continue
            events.append(
                RawMetaEvent(
                    channel=Channel.WHATSAPP,
                    platform_id=str(phone_number_id),
                    sender_id=str(message["from"]),
                    text=body,
                    platform_message_id=message.get("id"),
                    timestamp=int(message["timestamp"]) if str(message.get("timestamp", "")).isdigit() else None,
                    sender_name=names.get(message["from"]),
                )
            )
    return events


def _messaging_events(entry: dict, channel: Channel) -> List[RawMetaEvent]:
    events = []
    for item in entry.get("messaging") or []:
        message = item.get("message") or {}
        sender_id = (item.get("sender") or {}).get("id")
        if message.get("is_echo") or not message.get("text") or not sender_id:
            continue
        events.append(
            RawMetaEvent(
                channel=channel,
                platform_id=str(entry.get("id")),
                sender_id=str(sender_id),
                text=message["text"],
                platform_message_id=message.get("mid"),
                timestamp=item.get("timestamp") if isinstance(item.get("timestamp"), int) else None,
            )
        )
    return events


def parse_meta_payload(payload: Any) -> List[RawMetaEvent]:
    """Extract text messages from a Meta webhook body. Raises InvalidPayloadError on a malformed envelope."""
    if not isinstance(payload, dict) or not isinstance(payload.get("entry"), list):
        raise InvalidPayloadError("Meta payload must be an object with an entry list")

    messaging_channel = MESSAGING_OBJECTS.get(payload.get("object"), Channel.FACEBOOK)
    events: List[RawMetaEvent] = []
    for entry in payload["entry"]:
        if not isinstance(entry, dict):
            continue
        try:
            events.extend(_whatsapp_events(entry))
            events.extend(_messaging_events(entry, messaging_channel))
        except (AttributeError, TypeError, ValidationError) as e:
            logger.warning(f"Skipping malformed webhook entry: {e}")
    return events


def _received_at(timestamp: Optional[int]) -> datetime:
    if timestamp is None:
        return datetime.now(timezone.utc)
    # Messenger sends milliseconds, WhatsApp seconds
    seconds = timestamp / 1000 if timestamp > 10**11 else timestamp
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def normalize_meta_events(db: Session, events: List[RawMetaEvent]) -> List[InboundMessage]:
    """Resolve each event to its tenant. Events for unknown platform ids are logged and dropped."""
    messages = []
    for event in events:
        integration = find_by_platform_id(db, event.channel, event.platform_id)
        if integration is None:
            logger.warning(
                "Inbound event for unknown platform id dropped",
                extra={"context": {"channel": event.channel.value, "platform_id": event.platform_id}},
            )
            continue
        hints = CustomerHints(name=event.sender_name)
        if event.channel == Channel.WHATSAPP:
            hints.phone = event.sender_id
        messages.append(
            InboundMessage(
                business_id=integration.business_id,
                channel=event.channel,
                channel_sender_id=event.sender_id,
                text=event.text,
                platform_message_id=event.platform_message_id,
                received_at=_received_at(event.timestamp),
                hints=hints,
            )
        )
    return messages


def build_platform_message_id(message: InboundMessage) -> str:
    """Stable id for events that arrive without one, so redeliveries still collapse."""
    if message.platform_message_id:
        return message.platform_message_id.strip()
    digest = hashlib.sha256(message.text.encode("utf-8")).hexdigest()[:16]
    return f"{message.channel_sender_id}:{int(message.received_at.timestamp())}:{digest}"


def enqueue_inbound(db: Session, message: InboundMessage) -> bool:
    """Queue a message for the worker. Returns False when the same platform message was already queued."""
    platform_message_id = build_platform_message_id(message)
    if message.platform_message_id != platform_message_id:
        message = message.model_copy(update={"platform_message_id": platform_message_id})

    now = utcnow()
    stmt = (
        dialect_insert(db, InboundJob)
        .values(
            id=uuid.uuid4(),
            business_id=message.business_id,
            channel=message.channel.value,
            platform_message_id=platform_message_id,
            payload_json=message.model_dump(mode="json"),
            status="PENDING",
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["business_id", "channel", "platform_message_id"])
    )
    queued = db.execute(stmt).rowcount > 0
    if not queued:
        logger.info(
            "Duplicate inbound message ignored",
            extra={"context": {"business_id": str(message.business_id), "platform_message_id": platform_message_id}},
        )
    return queued
