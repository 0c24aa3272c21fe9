from enum import Enum
from typing import Optional

from frontdesk.services.errors import FrontDeskError


class ConversationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"
    ABANDONED = "ABANDONED"


VALID_TRANSITIONS = {
    ConversationStatus.ACTIVE: [
        ConversationStatus.RESOLVED,
        ConversationStatus.ESCALATED,
        ConversationStatus.ABANDONED,
    ],
    # ESCALATED -> ESCALATED re-escalates with a new reason
    ConversationStatus.ESCALATED: [
        ConversationStatus.ESCALATED,
        ConversationStatus.RESOLVED,
        ConversationStatus.ACTIVE,
    ],
    ConversationStatus.ABANDONED: [
        ConversationStatus.ACTIVE,
        ConversationStatus.ESCALATED,
        ConversationStatus.RESOLVED,
    ],
    ConversationStatus.RESOLVED: [],
}


class InvalidTransitionError(FrontDeskError):
    code = "invalid_transition"

    def __init__(self, from_state: ConversationStatus, to_state: ConversationStatus, detail: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        message = f"Invalid transition: {from_state.value} -> {to_state.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


def can_transition(from_state: ConversationStatus, to_state: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(
    from_state: ConversationStatus,
    to_state: ConversationStatus,
    reason: Optional[str] = None,
) -> ConversationStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    if to_state == ConversationStatus.ESCALATED and not (reason or "").strip():
        raise InvalidTransitionError(from_state, to_state, "escalation requires a reason")
    return to_state


def is_terminal(state: ConversationStatus) -> bool:
    return not VALID_TRANSITIONS.get(state)
