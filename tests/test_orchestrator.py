from frontdesk.models import Appointment
from frontdesk.services.errors import LLMProviderError
from frontdesk.services.orchestrator import (
    ERROR_EMPTY_RESPONSE,
    ERROR_MODEL_UNAVAILABLE,
    ERROR_TOOL_ROUNDS_EXCEEDED,
    ResponseOrchestrator,
)

from tests.conftest import FakeKnowledge, FakeLLM, text_response, tool_response

FALLBACK = "Please call us at +1 555 010 2000."
SHORT_BOOKING = '{"date": "2030-01-07", "time": "10:00", "serviceName": "Facial", "duration": 5}'


def _orchestrator(test_settings, responses, knowledge_text=""):
    llm = FakeLLM(responses)
    knowledge = FakeKnowledge(knowledge_text)
    return ResponseOrchestrator(llm, knowledge, test_settings, sleep=lambda _: None), llm, knowledge


class TestRespond:
    def test_plain_reply(self, db, business, customer, conversation, test_settings):
        orchestrator, llm, knowledge = _orchestrator(
            test_settings, [text_response("We open at 9am.", tokens=42)], knowledge_text="Hours: 9-5"
        )

        reply = orchestrator.respond(db, business, customer, conversation, [], "When do you open?")

        assert reply.content == "We open at 9am."
        assert reply.token_count == 42
        assert reply.model == "fake-model"
        assert not reply.fallback_used
        assert knowledge.queries == [(business.id, "When do you open?", test_settings.knowledge_top_k)]
        system = llm.calls[0]["messages"][0]
        assert system["role"] == "system"
        assert "Hours: 9-5" in system["content"]
        assert llm.calls[0]["messages"][-1] == {"role": "user", "content": "When do you open?"}

    def test_generation_budget_follows_response_length(self, db, business, customer, conversation, test_settings):
        business.ai_response_length = "brief"
        orchestrator, llm, _ = _orchestrator(test_settings, [text_response("Hi!")])

        orchestrator.respond(db, business, customer, conversation, [], "hello")

        assert llm.calls[0]["max_tokens"] == 150
        assert llm.calls[0]["temperature"] == 0.5
        assert [t["function"]["name"] for t in llm.calls[0]["tools"]] == [
            "check_availability",
            "book_appointment",
            "escalate_to_human",
        ]

    def test_history_is_replayed(self, db, business, customer, conversation, test_settings):
        history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "Hello Dana"}]
        orchestrator, llm, _ = _orchestrator(test_settings, [text_response("Sure")])

        orchestrator.respond(db, business, customer, conversation, history, "book me in")

        assert llm.calls[0]["messages"][1:3] == history

    def test_retries_once_then_succeeds(self, db, business, customer, conversation, test_settings):
        orchestrator, llm, _ = _orchestrator(
            test_settings, [LLMProviderError("timeout"), text_response("Recovered")]
        )

        reply = orchestrator.respond(db, business, customer, conversation, [], "hello")

        assert reply.content == "Recovered"
        assert len(llm.calls) == 2

    def test_fallback_after_two_failures(self, db, business, customer, conversation, test_settings):
        orchestrator, llm, _ = _orchestrator(
            test_settings, [LLMProviderError("timeout"), LLMProviderError("502", status_code=502)]
        )

        reply = orchestrator.respond(db, business, customer, conversation, [], "hello")

        assert reply.content == FALLBACK
        assert reply.fallback_used
        assert reply.error_code == ERROR_MODEL_UNAVAILABLE
        assert reply.model_unavailable
        assert len(llm.calls) == 2

    def test_empty_reply_falls_back(self, db, business, customer, conversation, test_settings):
        orchestrator, _, _ = _orchestrator(test_settings, [text_response("   ")])

        reply = orchestrator.respond(db, business, customer, conversation, [], "hello")

        assert reply.content == FALLBACK
        assert reply.error_code == ERROR_EMPTY_RESPONSE

    def test_tool_round_trip(self, db, business, customer, conversation, test_settings):
        orchestrator, llm, _ = _orchestrator(
            test_settings,
            [
                tool_response(("call_1", "check_availability", '{"date": "2030-01-07"}')),
                text_response("10am is free. Shall I book it?"),
            ],
        )

        reply = orchestrator.respond(db, business, customer, conversation, [], "Anything Monday?")

        assert reply.content == "10am is free. Shall I book it?"
        assert reply.tool_calls == [
            {"id": "call_1", "name": "check_availability", "arguments": '{"date": "2030-01-07"}'}
        ]
        assert reply.tool_results[0]["ok"]
        second_call = llm.calls[1]["messages"]
        assert second_call[-2]["role"] == "assistant"
        assert second_call[-2]["tool_calls"][0]["id"] == "call_1"
        assert second_call[-1]["role"] == "tool"
        assert second_call[-1]["tool_call_id"] == "call_1"
        assert second_call[-1]["content"].startswith("Available slots on 2030-01-07")

    def test_repeated_tool_call_id_executes_once(self, db, business, customer, conversation, test_settings):
        booking = ("call_book", "book_appointment", '{"date": "2030-01-07", "time": "10:00", "serviceName": "Facial"}')
        orchestrator, _, _ = _orchestrator(
            test_settings,
            [tool_response(booking), tool_response(booking), text_response("Booked!")],
        )

        reply = orchestrator.respond(db, business, customer, conversation, [], "Book Monday 10am")

        assert reply.content == "Booked!"
        assert len(reply.tool_calls) == 1
        assert db.query(Appointment).count() == 1

    def test_tool_loop_is_bounded(self, db, business, customer, conversation, test_settings):
        rounds = test_settings.max_tool_rounds
        responses = [
            tool_response((f"call_{i}", "check_availability", '{"date": "2030-01-07"}'), content="Checking...")
            for i in range(rounds + 1)
        ]
        orchestrator, llm, _ = _orchestrator(test_settings, responses)

        reply = orchestrator.respond(db, business, customer, conversation, [], "Anything Monday?")

        assert len(llm.calls) == rounds + 1
        assert len(reply.tool_calls) == rounds
        assert reply.error_code == ERROR_TOOL_ROUNDS_EXCEEDED
        assert reply.content == f"Checking...\n\n{FALLBACK}"

    def test_tool_failure_is_fed_back_to_model(self, db, business, customer, conversation, test_settings):
        orchestrator, llm, _ = _orchestrator(
            test_settings,
            [
                tool_response(("c1", "book_appointment", SHORT_BOOKING)),
                text_response("Sorry, that duration is too short."),
            ],
        )

        reply = orchestrator.respond(db, business, customer, conversation, [], "Book 5 minutes")

        assert reply.content == "Sorry, that duration is too short."
        assert llm.calls[1]["messages"][-1]["content"].startswith("Error (invalid_arguments):")
        assert db.query(Appointment).count() == 0

    def test_missing_tool_call_ids_are_assigned(self, db, business, customer, conversation, test_settings):
        orchestrator, llm, _ = _orchestrator(
            test_settings,
            [tool_response(("", "check_availability", '{"date": "2030-01-07"}')), text_response("Done")],
        )

        reply = orchestrator.respond(db, business, customer, conversation, [], "Monday?")

        assert reply.tool_calls[0]["id"] == "call_1_0"
        assert llm.calls[1]["messages"][-1]["tool_call_id"] == "call_1_0"

    def test_escalation_is_reported(self, db, business, customer, conversation, test_settings):
        orchestrator, _, _ = _orchestrator(
            test_settings,
            [
                tool_response(("c1", "escalate_to_human", '{"reason": "refund request"}')),
                text_response("A team member will follow up shortly."),
            ],
        )

        reply = orchestrator.respond(db, business, customer, conversation, [], "I want a refund")

        assert reply.escalated
        assert conversation.status == "ESCALATED"
        assert "content" not in reply.as_metadata()
