from frontdesk.services.conversation_service import (
    append_message,
    get_or_create_active,
    load_history,
    transition,
)
from frontdesk.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
)

__all__ = [
    "ConversationStatus",
    "InvalidTransitionError",
    "append_message",
    "can_transition",
    "get_or_create_active",
    "load_history",
    "transition",
]
