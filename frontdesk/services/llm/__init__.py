from frontdesk.services.llm.base import LLMProvider, LLMResponse, ToolCall
from frontdesk.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider", "ToolCall"]
