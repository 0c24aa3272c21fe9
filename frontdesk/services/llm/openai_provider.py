from typing import List, Optional

import httpx

from frontdesk.logging_config import get_logger
from frontdesk.services.errors import LLMProviderError
from frontdesk.services.llm.base import LLMProvider, LLMResponse, ToolCall

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible chat completions provider (OpenAI, OpenRouter)."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "openai/gpt-4o-mini",
        base_url: str = "https://openrouter.ai/api/v1",
        default_timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = f"{base_url.rstrip('/')}/chat/completions"
        self.default_timeout = default_timeout

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
        tools: Optional[List[dict]] = None,
    ) -> LLMResponse:
        """Generate response from the chat completions endpoint."""

        model = model or self.default_model
        timeout = timeout_seconds if timeout_seconds is not None else self.default_timeout

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        logger.debug(f"LLM request: model={model}, messages_count={len(messages)}, tools={bool(tools)}")

        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise LLMProviderError(f"LLM request timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMProviderError(f"LLM transport error: {e}") from e

        logger.debug(f"LLM response status: {response.status_code}")

        if response.status_code != 200:
            logger.error(f"LLM error: {response.text[:500]}")
            raise LLMProviderError(
                f"LLM API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LLMProviderError("LLM returned a non-JSON body") from e

        content = ""
        tool_calls: List[ToolCall] = []
        choices = data.get("choices") or []
        if choices:
            message = choices[0].get("message") or {}
            content = message.get("content") or ""
            for raw in message.get("tool_calls") or []:
                function = raw.get("function") or {}
                tool_calls.append(
                    ToolCall(
                        id=raw.get("id") or "",
                        name=function.get("name") or "",
                        arguments=function.get("arguments") or "{}",
                    )
                )
        elif data.get("error"):
            raise LLMProviderError(f"LLM API error: {data['error']}")

        logger.debug(f"LLM content: {content[:100] if content else 'EMPTY'}, tool_calls={len(tool_calls)}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            tool_calls=tool_calls,
        )
