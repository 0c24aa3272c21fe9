import hashlib
import hmac
import json
import uuid
from datetime import datetime, timezone

import pytest

from frontdesk.models import InboundJob, WebhookLog
from frontdesk.schemas.inbound import Channel, InboundMessage
from frontdesk.services.errors import InvalidPayloadError
from frontdesk.services.ingress_service import (
    build_platform_message_id,
    enqueue_inbound,
    normalize_meta_events,
    parse_meta_payload,
    record_webhook,
    verify_meta_signature,
    verify_voice_secret,
)
from frontdesk.services.integration_service import upsert_integration


def whatsapp_payload(text="Anything Monday?", message_id="wamid.ABC123", phone_number_id="104857600000001"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"display_phone_number": "15550102000", "phone_number_id": phone_number_id},
                            "contacts": [{"profile": {"name": "Dana"}, "wa_id": "15550001111"}],
                            "messages": [
                                {
                                    "from": "15550001111",
                                    "id": message_id,
                                    "timestamp": "1893974400",
                                    "type": "text",
                                    "text": {"body": text},
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


def messenger_payload(obj="page", text="hello", mid="m_1", is_echo=False):
    return {
        "object": obj,
        "entry": [
            {
                "id": "PAGE_1",
                "time": 1893974400000,
                "messaging": [
                    {
                        "sender": {"id": "PSID_9"},
                        "recipient": {"id": "PAGE_1"},
                        "timestamp": 1893974400000,
                        "message": {"mid": mid, "text": text, "is_echo": is_echo},
                    }
                ],
            }
        ],
    }


def sign(body: bytes, secret: str = "app-secret") -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestSignatures:
    def test_valid_meta_signature(self):
        body = b'{"object": "page"}'
        assert verify_meta_signature(body, sign(body), "app-secret")

    def test_tampered_body(self):
        body = b'{"object": "page"}'
        assert not verify_meta_signature(body + b" ", sign(body), "app-secret")

    def test_missing_header_or_secret(self):
        body = b"{}"
        assert not verify_meta_signature(body, None, "app-secret")
        assert not verify_meta_signature(body, sign(body), None)
        assert not verify_meta_signature(body, "md5=abc", "app-secret")

    def test_voice_secret(self):
        assert verify_voice_secret("voice-secret", "voice-secret")
        assert not verify_voice_secret("nope", "voice-secret")
        assert not verify_voice_secret(None, "voice-secret")
        assert not verify_voice_secret("anything", None)


class TestRecordWebhook:
    def test_stores_raw_body_and_event(self, db):
        body = json.dumps(whatsapp_payload()).encode()

        record_webhook(db, "meta", body, signature_valid=False)

        log = db.query(WebhookLog).one()
        assert log.source == "meta"
        assert log.event == "whatsapp_business_account"
        assert log.signature_valid is False
        assert log.payload["object"] == "whatsapp_business_account"

    def test_non_json_body(self, db):
        record_webhook(db, "voice", b"not json", signature_valid=True)

        log = db.query(WebhookLog).one()
        assert log.payload is None
        assert log.raw_body == "not json"


class TestParseMetaPayload:
    def test_whatsapp_text_message(self):
        events = parse_meta_payload(whatsapp_payload())

        assert len(events) == 1
        event = events[0]
        assert event.channel == Channel.WHATSAPP
        assert event.platform_id == "104857600000001"
        assert event.sender_id == "15550001111"
        assert event.sender_name == "Dana"
        assert event.platform_message_id == "wamid.ABC123"
        assert event.timestamp == 1893974400

    def test_status_updates_are_ignored(self):
        payload = whatsapp_payload()
        value = payload["entry"][0]["changes"][0]["value"]
        del value["messages"]
        value["statuses"] = [{"id": "wamid.X", "status": "delivered"}]

        assert parse_meta_payload(payload) == []

    def test_non_text_messages_are_ignored(self):
        payload = whatsapp_payload()
        payload["entry"][0]["changes"][0]["value"]["messages"][0]["type"] = "image"

        assert parse_meta_payload(payload) == []

    def test_messenger_and_instagram(self):
        assert parse_meta_payload(messenger_payload("page"))[0].channel == Channel.FACEBOOK
        event = parse_meta_payload(messenger_payload("instagram"))[0]
        assert event.channel == Channel.INSTAGRAM
        assert event.platform_id == "PAGE_1"
        assert event.sender_id == "PSID_9"
        assert event.platform_message_id == "m_1"

    def test_echoes_are_ignored(self):
        assert parse_meta_payload(messenger_payload(is_echo=True)) == []

    @pytest.mark.parametrize("payload", [None, [], {"object": "page"}, {"entry": "nope"}])
    def test_malformed_envelope(self, payload):
        with pytest.raises(InvalidPayloadError):
            parse_meta_payload(payload)


class TestNormalize:
    def test_resolves_tenant_from_phone_number_id(self, db, business, whatsapp_integration):
        messages = normalize_meta_events(db, parse_meta_payload(whatsapp_payload()))

        assert len(messages) == 1
        message = messages[0]
        assert message.business_id == business.id
        assert message.channel == Channel.WHATSAPP
        assert message.hints.phone == "15550001111"
        assert message.hints.name == "Dana"
        assert message.received_at == datetime(2030, 1, 7, tzinfo=timezone.utc)

    def test_unknown_platform_id_is_dropped(self, db, business, whatsapp_integration):
        events = parse_meta_payload(whatsapp_payload(phone_number_id="999"))

        assert normalize_meta_events(db, events) == []

    def test_millisecond_timestamps(self, db, business, cipher):
        upsert_integration(db, cipher, business.id, Channel.FACEBOOK, "PAGE_1", "page-token")

        messages = normalize_meta_events(db, parse_meta_payload(messenger_payload("page")))

        assert messages[0].received_at == datetime(2030, 1, 7, tzinfo=timezone.utc)


class TestEnqueue:
    def _message(self, business_id, platform_message_id="wamid.1", text="hi"):
        return InboundMessage(
            business_id=business_id,
            channel=Channel.WHATSAPP,
            channel_sender_id="15550001111",
            text=text,
            platform_message_id=platform_message_id,
            received_at=datetime(2030, 1, 7, tzinfo=timezone.utc),
        )

    def test_same_platform_message_is_queued_once(self, db, business):
        assert enqueue_inbound(db, self._message(business.id))
        assert not enqueue_inbound(db, self._message(business.id))
        db.commit()

        job = db.query(InboundJob).one()
        assert job.status == "PENDING"
        assert job.payload_json["text"] == "hi"

    def test_same_id_on_other_tenant_is_queued(self, db, business):
        assert enqueue_inbound(db, self._message(business.id))
        assert enqueue_inbound(db, self._message(uuid.uuid4()))

    def test_missing_id_is_derived_from_content(self, db, business):
        message = self._message(business.id, platform_message_id=None)

        derived = build_platform_message_id(message)

        assert derived.startswith("15550001111:1893974400:")
        assert derived == build_platform_message_id(message)
        assert enqueue_inbound(db, message)
        assert not enqueue_inbound(db, message)
        assert db.query(InboundJob).one().platform_message_id == derived
