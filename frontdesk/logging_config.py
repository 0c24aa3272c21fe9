"""Structured JSON logs for the Front-Desk API.

Every line is one JSON object. Tenant identifiers passed in ``extra={"context": {...}}``
are lifted to top-level keys so logs can be filtered per business, conversation and channel
without parsing the nested context.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any, Optional

TENANT_KEYS = ("business_id", "conversation_id", "channel")
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        context = dict(getattr(record, "context", None) or {})
        for key in TENANT_KEYS:
            if context.get(key) is not None:
                entry[key] = context.pop(key)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # UUIDs and datetimes in context are rendered with str()
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", stream: Optional[IO[str]] = None) -> None:
    """Route the root logger to one JSON handler. Unknown level names fall back to INFO."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"frontdesk.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Carries the context of one pipeline run; per-call ``context=`` is merged on top."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**self.extra, **(context or {})}}
        return msg, kwargs

    def bind(self, **context: Any) -> "LoggerAdapter":
        """A new adapter with more context, e.g. once the conversation is known."""
        return LoggerAdapter(self.logger, {**self.extra, **context})
