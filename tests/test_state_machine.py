import pytest

from frontdesk.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    is_terminal,
    transition,
)

S = ConversationStatus


class TestValidTransitions:
    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (S.ACTIVE, S.RESOLVED),
            (S.ACTIVE, S.ABANDONED),
            (S.ESCALATED, S.RESOLVED),
            (S.ESCALATED, S.ACTIVE),
            (S.ABANDONED, S.ACTIVE),
            (S.ABANDONED, S.RESOLVED),
        ],
    )
    def test_allowed(self, from_state, to_state):
        assert transition(from_state, to_state) == to_state

    def test_active_to_escalated_with_reason(self):
        assert transition(S.ACTIVE, S.ESCALATED, "customer asked for a manager") == S.ESCALATED

    def test_re_escalation_is_allowed(self):
        assert transition(S.ESCALATED, S.ESCALATED, "still unhappy") == S.ESCALATED


class TestInvalidTransitions:
    @pytest.mark.parametrize("to_state", list(S))
    def test_resolved_is_terminal(self, to_state):
        with pytest.raises(InvalidTransitionError):
            transition(S.RESOLVED, to_state, "reason")

    def test_active_to_active(self):
        with pytest.raises(InvalidTransitionError):
            transition(S.ACTIVE, S.ACTIVE)

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_escalation_requires_reason(self, reason):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(S.ACTIVE, S.ESCALATED, reason)
        assert "reason" in str(exc_info.value)

    def test_error_carries_states(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(S.RESOLVED, S.ACTIVE)
        assert exc_info.value.from_state == S.RESOLVED
        assert exc_info.value.to_state == S.ACTIVE
        assert exc_info.value.code == "invalid_transition"


class TestHelperFunctions:
    def test_can_transition(self):
        assert can_transition(S.ACTIVE, S.ESCALATED) is True
        assert can_transition(S.RESOLVED, S.ESCALATED) is False

    def test_is_terminal(self):
        assert is_terminal(S.RESOLVED) is True
        assert is_terminal(S.ACTIVE) is False
