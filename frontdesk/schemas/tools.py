"""Argument models for the assistant's tools.

Models send camelCase keys (the names used in the tool schemas); snake_case is
accepted too so that internal callers can build arguments directly.
"""

import datetime as dt
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

MIN_APPOINTMENT_MINUTES = 15


class ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class CheckAvailabilityArgs(ToolArgs):
    date: dt.date
    service_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("serviceId", "service_id"))


class BookAppointmentArgs(ToolArgs):
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    start_time: Optional[dt.datetime] = Field(default=None, validation_alias=AliasChoices("startTime", "start_time"))
    duration: Optional[int] = None
    service_name: str = Field(min_length=1, validation_alias=AliasChoices("serviceName", "service_name"))
    customer_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("customerName", "customer_name"))
    customer_phone: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customerPhone", "customer_phone")
    )
    customer_email: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customerEmail", "customer_email")
    )
    notes: Optional[str] = None

    @field_validator("duration")
    @classmethod
    def _duration_minimum(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < MIN_APPOINTMENT_MINUTES:
            raise ValueError(f"duration must be at least {MIN_APPOINTMENT_MINUTES} minutes")
        return value

    @model_validator(mode="after")
    def _needs_start(self) -> "BookAppointmentArgs":
        if self.start_time is None and (self.date is None or self.time is None):
            raise ValueError("either startTime or both date and time are required")
        return self


class EscalateArgs(ToolArgs):
    reason: str = Field(min_length=1)


TOOL_SCHEMAS = [
    {
        "type": "function",
        "function": {
            "name": "check_availability",
            "description": "Check available appointment slots for a specific date",
            "parameters": {
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "Date in YYYY-MM-DD format"},
                    "serviceId": {"type": "string", "description": "Optional service ID"},
                },
                "required": ["date"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "book_appointment",
            "description": "Book an appointment",
            "parameters": {
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "Date in YYYY-MM-DD format"},
                    "time": {"type": "string", "description": "Time in HH:MM format"},
                    "serviceName": {"type": "string"},
                    "customerName": {"type": "string"},
                    "customerPhone": {"type": "string"},
                    "customerEmail": {"type": "string"},
                },
                "required": ["date", "time", "serviceName"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "escalate_to_human",
            "description": "Transfer conversation to human agent",
            "parameters": {
                "type": "object",
                "properties": {"reason": {"type": "string"}},
                "required": ["reason"],
            },
        },
    },
]
