import io
import json
import logging
import sys
import uuid

import pytest

from frontdesk.logging_config import JSONFormatter, LoggerAdapter, get_logger, setup_logging


def make_record(msg="hello", context=None, exc_info=None):
    record = logging.LogRecord("frontdesk.test", logging.INFO, __file__, 1, msg, None, exc_info)
    if context is not None:
        record.context = context
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestJSONFormatter:
    def test_tenant_keys_are_top_level(self):
        business_id = uuid.uuid4()
        line = JSONFormatter().format(
            make_record(context={"business_id": business_id, "channel": "whatsapp", "delivered": True})
        )
        entry = json.loads(line)
        assert entry["business_id"] == str(business_id)
        assert entry["channel"] == "whatsapp"
        assert entry["context"] == {"delivered": True}
        assert entry["msg"] == "hello"
        assert entry["level"] == "INFO"

    def test_no_context_key_when_only_tenant_keys(self):
        entry = json.loads(JSONFormatter().format(make_record(context={"conversation_id": "c1"})))
        assert entry["conversation_id"] == "c1"
        assert "context" not in entry

    def test_exception_is_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record(exc_info=sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]


class TestLoggerAdapter:
    def test_bind_merges_context(self):
        log = LoggerAdapter(get_logger("test"), {"business_id": "b1"})
        bound = log.bind(conversation_id="c1")
        _, kwargs = bound.process("msg", {"context": {"fallback_used": False}})
        assert kwargs["extra"]["context"] == {"business_id": "b1", "conversation_id": "c1", "fallback_used": False}
        assert log.extra == {"business_id": "b1"}

    def test_call_context_overrides_bound_value(self):
        log = LoggerAdapter(get_logger("test"), {"channel": "whatsapp"})
        _, kwargs = log.process("msg", {"context": {"channel": "webchat"}})
        assert kwargs["extra"]["context"]["channel"] == "webchat"


class TestSetupLogging:
    def test_writes_json_lines_to_stream(self, restore_root_logger):
        stream = io.StringIO()
        setup_logging("debug", stream=stream)
        get_logger("test").debug("ready", extra={"context": {"business_id": "b1"}})
        entry = json.loads(stream.getvalue().strip())
        assert entry["logger"] == "frontdesk.test"
        assert entry["business_id"] == "b1"

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        setup_logging("chatty", stream=io.StringIO())
        assert logging.getLogger().level == logging.INFO
        assert len(logging.getLogger().handlers) == 1
