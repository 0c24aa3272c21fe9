"""Response orchestration: prompt, model call, tool loop, fallback."""

import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from frontdesk.logging_config import get_logger
from frontdesk.models import Business, Conversation, Customer
from frontdesk.schemas.tools import TOOL_SCHEMAS
from frontdesk.services.errors import LLMProviderError
from frontdesk.services.knowledge_service import KnowledgeGateway
from frontdesk.services.llm.base import LLMProvider, LLMResponse
from frontdesk.services.prompt_builder import build_messages, build_system_prompt, fallback_message
from frontdesk.services.tool_service import ToolExecutor, ToolResult

logger = get_logger("orchestrator")

# response length -> (max_tokens, temperature)
GENERATION_BUDGETS = {
    "brief": (150, 0.5),
    "moderate": (400, 0.7),
    "detailed": (800, 0.7),
}

ERROR_MODEL_UNAVAILABLE = "model_unavailable"
ERROR_TOOL_ROUNDS_EXCEEDED = "tool_rounds_exceeded"
ERROR_EMPTY_RESPONSE = "empty_response"


@dataclass
class AssistantReply:
    content: str
    token_count: int = 0
    latency_ms: int = 0
    model: Optional[str] = None
    tool_calls: list[dict] = field(default_factory=list)
    tool_results: list[dict] = field(default_factory=list)
    fallback_used: bool = False
    error_code: Optional[str] = None
    escalated: bool = False

    @property
    def model_unavailable(self) -> bool:
        return self.error_code == ERROR_MODEL_UNAVAILABLE

    def as_metadata(self) -> dict:
        data = asdict(self)
        data.pop("content")
        return data


def _join(*parts: str) -> str:
    return "\n\n".join(p.strip() for p in parts if p and p.strip())


class ResponseOrchestrator:
    def __init__(
        self,
        llm: LLMProvider,
        knowledge: KnowledgeGateway,
        settings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.llm = llm
        self.knowledge = knowledge
        self.settings = settings
        self._sleep = sleep

    def _generate(self, messages: list[dict], max_tokens: int, temperature: float) -> LLMResponse:
        """One model call, retried once after a short backoff."""
        kwargs = dict(
            model=self.settings.llm_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=self.settings.llm_timeout_seconds,
            tools=TOOL_SCHEMAS,
        )
        try:
            return self.llm.generate(messages, **kwargs)
        except LLMProviderError as e:
            logger.warning(f"LLM call failed, retrying once: {e}")
            self._sleep(self.settings.llm_retry_backoff_seconds)
            return self.llm.generate(messages, **kwargs)

    def respond(
        self,
        db: Session,
        business: Business,
        customer: Optional[Customer],
        conversation: Optional[Conversation],
        history: list[dict],
        user_message: str,
    ) -> AssistantReply:
        started = time.monotonic()
        log_context = {
            "business_id": str(business.id),
            "conversation_id": str(conversation.id) if conversation else None,
        }

        knowledge = self.knowledge.search(business.id, user_message, top_k=self.settings.knowledge_top_k)
        system_prompt = build_system_prompt(business, customer, knowledge)
        messages = build_messages(system_prompt, history, user_message)
        max_tokens, temperature = GENERATION_BUDGETS.get(
            business.ai_response_length or "moderate", GENERATION_BUDGETS["moderate"]
        )
        fallback = fallback_message(business)
        executor = ToolExecutor(db, business, customer, conversation)

        reply = AssistantReply(content="")
        executed: dict[str, ToolResult] = {}
        last_text = ""
        rounds = 0

        while True:
            try:
                response = self._generate(messages, max_tokens, temperature)
            except LLMProviderError as e:
                logger.error(f"LLM unavailable after retry: {e}", extra={"context": log_context})
                reply.content = _join(last_text, fallback)
                reply.fallback_used = True
                reply.error_code = ERROR_MODEL_UNAVAILABLE
                break

            reply.token_count += response.total_tokens
            reply.model = response.model
            if response.content and response.content.strip():
                last_text = response.content

            if not response.tool_calls:
                if response.content and response.content.strip():
                    reply.content = response.content.strip()
                else:
                    reply.content = _join(last_text, fallback)
                    reply.fallback_used = True
                    reply.error_code = ERROR_EMPTY_RESPONSE
                break

            if rounds >= self.settings.max_tool_rounds:
                logger.warning(
                    f"Tool loop stopped after {rounds} rounds",
                    extra={"context": log_context},
                )
                reply.content = _join(last_text, fallback)
                reply.fallback_used = True
                reply.error_code = ERROR_TOOL_ROUNDS_EXCEEDED
                break
            rounds += 1

            calls = response.tool_calls
            for index, call in enumerate(calls):
                if not call.id:
                    call.id = f"call_{rounds}_{index}"
            messages.append(
                {
                    "role": "assistant",
                    "content": response.content or None,
                    "tool_calls": [call.as_message_part() for call in calls],
                }
            )
            for call in calls:
                result = executed.get(call.id)
                if result is None:
                    result = executor.execute(call.name, call.arguments)
                    executed[call.id] = result
                    reply.tool_calls.append({"id": call.id, "name": call.name, "arguments": call.arguments})
                    reply.tool_results.append({"id": call.id, **result.as_metadata()})
                    if result.escalated:
                        reply.escalated = True
                messages.append({"role": "tool", "tool_call_id": call.id, "content": result.to_text()})

        reply.latency_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Reply generated",
            extra={
                "context": {
                    **log_context,
                    "latency_ms": reply.latency_ms,
                    "tokens": reply.token_count,
                    "tool_calls": len(reply.tool_calls),
                    "fallback_used": reply.fallback_used,
                    "error_code": reply.error_code,
                }
            },
        )
        return reply
