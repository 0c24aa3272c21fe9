import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INBOUND_WORKER_ENABLED", "false")

import uuid
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from frontdesk.config import Settings, settings
from frontdesk.database import Base, create_db_engine, get_db
from frontdesk.main import app
from frontdesk.models import Business, Conversation, Customer, Integration, Service
from frontdesk.services.crypto_service import CredentialCipher
from frontdesk.services.dispatch_service import Dispatcher
from frontdesk.services.llm.base import LLMProvider, LLMResponse, ToolCall
from frontdesk.services.meta_service import MetaSendError
from frontdesk.services.orchestrator import ResponseOrchestrator
from frontdesk.services.pipeline import Pipeline

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"

WEEKDAY_HOURS = {"open": "09:00", "close": "17:00"}
ACME_HOURS = {
    "monday": WEEKDAY_HOURS,
    "tuesday": WEEKDAY_HOURS,
    "wednesday": WEEKDAY_HOURS,
    "thursday": WEEKDAY_HOURS,
    "friday": WEEKDAY_HOURS,
    "saturday": {"open": "10:00", "close": "14:00"},
}


class FakeLLM(LLMProvider):
    """Scripted provider: returns (or raises) queued items in order."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def generate(self, messages, model=None, temperature=0.7, max_tokens=1000, timeout_seconds=None, tools=None):
        self.calls.append(
            {
                "messages": [dict(m) for m in messages],
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "timeout_seconds": timeout_seconds,
                "tools": tools,
            }
        )
        item = self.responses.pop(0) if self.responses else LLMResponse(content="OK", model="fake-model")
        if isinstance(item, Exception):
            raise item
        return item


class FakeKnowledge:
    def __init__(self, text: str = ""):
        self.text = text
        self.queries = []

    def search(self, business_id, query, top_k=5):
        self.queries.append((business_id, query, top_k))
        return self.text


class FakeTransport:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def _send(self, kind, token, platform_id, to, text):
        if self.fail:
            raise MetaSendError("Graph API error: 500 - boom", status_code=500)
        self.sent.append({"kind": kind, "token": token, "platform_id": platform_id, "to": to, "text": text})
        return {"ok": True}

    def send_whatsapp(self, access_token, phone_number_id, to, text):
        return self._send("whatsapp", access_token, phone_number_id, to, text)

    def send_messenger(self, access_token, page_id, recipient_id, text):
        return self._send("messenger", access_token, page_id, recipient_id, text)


def text_response(content: str, tokens: int = 10) -> LLMResponse:
    return LLMResponse(content=content, model="fake-model", usage={"total_tokens": tokens})


def tool_response(*calls: tuple, content: str = "") -> LLMResponse:
    """calls: (id, name, arguments_json)"""
    return LLMResponse(
        content=content,
        model="fake-model",
        usage={"total_tokens": 5},
        tool_calls=[ToolCall(id=c[0], name=c[1], arguments=c[2]) for c in calls],
    )


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        llm_retry_backoff_seconds=0.0,
        encryption_key=TEST_KEY,
        meta_app_secret="app-secret",
        meta_webhook_verify_token="verify-me",
        vapi_webhook_secret="voice-secret",
        alert_webhook_url=None,
    )


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cipher():
    return CredentialCipher(TEST_KEY)


@pytest.fixture
def business(db):
    business = Business(
        id=uuid.uuid4(),
        name="Acme Spa",
        industry="MEDSPA",
        phone="+1 555 010 2000",
        timezone="America/New_York",
        business_hours=ACME_HOURS,
        ai_personality="warm",
        ai_response_length="moderate",
        ai_fallback_message="Please call us at +1 555 010 2000.",
    )
    db.add(business)
    db.add(Service(business_id=business.id, name="Signature Facial", duration_minutes=60, price=120))
    db.add(Service(business_id=business.id, name="Brow Shaping", duration_minutes=30, price=35))
    db.commit()
    return business


@pytest.fixture
def customer(db, business):
    customer = Customer(business_id=business.id, name="Dana", whatsapp_id="15550001111", phone="15550001111")
    db.add(customer)
    db.commit()
    return customer


@pytest.fixture
def conversation(db, business, customer):
    conversation = Conversation(
        business_id=business.id,
        customer_id=customer.id,
        channel="WHATSAPP",
        status="ACTIVE",
        started_at=datetime.now(timezone.utc),
    )
    db.add(conversation)
    db.commit()
    return conversation


@pytest.fixture
def whatsapp_integration(db, business, cipher):
    integration = Integration(
        business_id=business.id,
        type="WHATSAPP",
        platform_id="104857600000001",
        access_token=cipher.encrypt("wa-token"),
        is_active=True,
    )
    db.add(integration)
    db.commit()
    return integration


@pytest.fixture
def make_pipeline(test_settings, cipher):
    def _make(responses=None, knowledge_text: str = "", transport=None):
        llm = FakeLLM(responses)
        knowledge = FakeKnowledge(knowledge_text)
        transport = transport or FakeTransport()
        orchestrator = ResponseOrchestrator(llm, knowledge, test_settings, sleep=lambda _: None)
        pipeline = Pipeline(orchestrator, Dispatcher(transport, cipher), test_settings)
        pipeline.fakes = {"llm": llm, "knowledge": knowledge, "transport": transport}
        return pipeline

    return _make


@pytest.fixture
def client(db, make_pipeline, test_settings, monkeypatch):
    """TestClient bound to the test session; `client.use_pipeline(...)` swaps in a scripted pipeline."""
    for name in ("meta_app_secret", "meta_webhook_verify_token", "vapi_webhook_secret"):
        monkeypatch.setattr(settings, name, getattr(test_settings, name))

    def override_get_db():
        yield db

    original_pipeline = app.state.pipeline
    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)

    def use_pipeline(responses=None, **kwargs):
        app.state.pipeline = make_pipeline(responses, **kwargs)
        return app.state.pipeline

    test_client.use_pipeline = use_pipeline
    use_pipeline()
    yield test_client
    app.dependency_overrides.clear()
    app.state.pipeline = original_pipeline
