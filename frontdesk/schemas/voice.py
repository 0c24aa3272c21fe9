import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class VoiceFunction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    arguments: Any = None

    def raw_arguments(self) -> str:
        if self.arguments is None:
            return "{}"
        if isinstance(self.arguments, str):
            return self.arguments
        return json.dumps(self.arguments)


class VoiceToolCall(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    function: VoiceFunction


class VoiceFunctionCall(BaseModel):
    """Legacy single-call shape: {"name": ..., "parameters": {...}}."""

    model_config = ConfigDict(extra="ignore")

    name: str
    parameters: Any = None

    def raw_arguments(self) -> str:
        if isinstance(self.parameters, str):
            return self.parameters
        return json.dumps(self.parameters or {})


class VoiceCall(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    customer: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    assistant: dict[str, Any] = Field(default_factory=dict)

    def business_id(self) -> Optional[str]:
        for source in (self.metadata, self.assistant.get("metadata") or {}):
            value = source.get("businessId") or source.get("business_id")
            if value:
                return str(value)
        return None

    def caller_number(self) -> Optional[str]:
        number = self.customer.get("number")
        return str(number) if number else None


class VoiceEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    call: VoiceCall = Field(default_factory=VoiceCall)
    tool_call_list: list[VoiceToolCall] = Field(default_factory=list, alias="toolCallList")
    function_call: Optional[VoiceFunctionCall] = Field(default=None, alias="functionCall")
    transcript: Optional[str] = None
    summary: Optional[str] = None
    ended_reason: Optional[str] = Field(default=None, alias="endedReason")
    artifact: dict[str, Any] = Field(default_factory=dict)

    def full_transcript(self) -> str:
        return (self.transcript or self.artifact.get("transcript") or "").strip()


class VoiceWebhookBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: VoiceEvent


class VoiceToolResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_call_id: str = Field(serialization_alias="toolCallId")
    result: str
