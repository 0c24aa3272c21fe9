"""Operational alerts posted to a generic webhook (Slack-compatible payload)."""

from typing import Optional

import httpx

from frontdesk.config import settings
from frontdesk.logging_config import get_logger

logger = get_logger("alert_service")


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert to ALERT_WEBHOOK_URL.

    Args:
        level: INFO, WARNING, ERROR, CRITICAL
        message: Alert message
        context: Optional context dict

    Returns:
        True if sent successfully
    """
    url = settings.alert_webhook_url
    if not url:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    text = f"[{level}] {message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n```\n{context_str}\n```"

    payload = {
        "text": text,
        "level": level,
        "context": {k: str(v) for k, v in (context or {}).items()},
    }
    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(url, json=payload)
            return 200 <= response.status_code < 300
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for ERROR level alert."""
    return send_alert("ERROR", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for CRITICAL level alert."""
    return send_alert("CRITICAL", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for WARNING level alert."""
    return send_alert("WARNING", message, context)
