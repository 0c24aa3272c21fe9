from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    business_id: Optional[UUID] = Field(default=None, validation_alias=AliasChoices("businessId", "business_id"))
    customer_id: Optional[UUID] = Field(default=None, validation_alias=AliasChoices("customerId", "customer_id"))
    conversation_id: Optional[UUID] = Field(
        default=None, validation_alias=AliasChoices("conversationId", "conversation_id")
    )
    customer_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("customerName", "customer_name"))
    customer_email: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customerEmail", "customer_email")
    )
    customer_phone: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customerPhone", "customer_phone")
    )


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation_id: UUID = Field(serialization_alias="conversationId")
    customer_id: UUID = Field(serialization_alias="customerId")
    metadata: dict[str, Any] = Field(default_factory=dict)
