"""Error taxonomy for the inbound pipeline.

Each error stops at a fixed layer: ingress errors never reach the conversation,
tool errors never leave the tool executor, and provider errors become a
fallback reply inside the orchestrator.
"""

from typing import Optional


class FrontDeskError(Exception):
    code = "frontdesk_error"


class InvalidPayloadError(FrontDeskError):
    code = "invalid_payload"


class DuplicateMessage(FrontDeskError):
    """Signal that an inbound message was already accepted. Not a failure."""

    code = "duplicate"

    def __init__(self, platform_message_id: Optional[str] = None):
        self.platform_message_id = platform_message_id
        super().__init__(f"Duplicate inbound message: {platform_message_id}")


class LLMProviderError(FrontDeskError):
    code = "llm_provider_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ToolExecutionError(FrontDeskError):
    code = "tool_execution_failed"

    def __init__(self, message: str, code: Optional[str] = None):
        if code:
            self.code = code
        super().__init__(message)


class DuplicateBooking(ToolExecutionError):
    code = "duplicate_booking"


class StorageError(FrontDeskError):
    code = "storage_error"


class NotFoundError(FrontDeskError):
    code = "not_found"
