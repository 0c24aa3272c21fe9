import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from frontdesk.logging_config import get_logger
from frontdesk.models import Business, Conversation, Customer
from frontdesk.schemas.tools import BookAppointmentArgs, CheckAvailabilityArgs, EscalateArgs
from frontdesk.services import appointment_service, conversation_service
from frontdesk.services.errors import FrontDeskError
from frontdesk.services.prompt_builder import business_zone
from frontdesk.services.result import Result

logger = get_logger("tool_service")


@dataclass
class ToolResult(Result[Any]):
    name: str = ""
    escalated: bool = False

    def to_text(self) -> str:
        """Tool-turn content for the model."""
        if self.ok and isinstance(self.value, dict):
            return self.value.get("message") or json.dumps(self.value, default=str)
        return self.describe()

    def as_metadata(self) -> dict:
        return {"name": self.name, "ok": self.ok, "result": self.to_text(), "error_code": self.error_code}


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ())) or "arguments"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class ToolExecutor:
    """Runs the assistant's tools for one conversation turn. Never raises: every outcome is a ToolResult."""

    def __init__(self, db: Session, business: Business, customer: Customer, conversation: Optional[Conversation]):
        self.db = db
        self.business = business
        self.customer = customer
        self.conversation = conversation
        self._handlers = {
            "check_availability": (CheckAvailabilityArgs, self.check_availability),
            "book_appointment": (BookAppointmentArgs, self.book_appointment),
            "escalate_to_human": (EscalateArgs, self.escalate_to_human),
        }

    def execute(self, name: str, raw_args: Any) -> ToolResult:
        entry = self._handlers.get(name)
        if entry is None:
            return ToolResult.failure(f"Unknown tool: {name}", "unknown_tool", name=name)
        args_model, handler = entry

        try:
            data = json.loads(raw_args) if isinstance(raw_args, (str, bytes)) else (raw_args or {})
            if not isinstance(data, dict):
                raise ValueError("arguments must be a JSON object")
            args = args_model.model_validate(data)
        except ValidationError as e:
            return ToolResult.failure(f"Invalid arguments: {_validation_message(e)}", "invalid_arguments", name=name)
        except ValueError as e:
            return ToolResult.failure(f"Invalid arguments: {e}", "invalid_arguments", name=name)

        try:
            # Savepoint so a failing tool cannot poison the surrounding transaction
            with self.db.begin_nested():
                result = handler(args)
        except FrontDeskError as e:
            logger.info(f"Tool {name} rejected: {e}", extra={"context": {"code": e.code}})
            return ToolResult.from_error(e, name=name)
        except Exception as e:
            logger.error(
                f"Tool {name} failed: {e}",
                exc_info=True,
                extra={"context": {"business_id": str(self.business.id)}},
            )
            return ToolResult.failure("The tool failed unexpectedly", "tool_execution_failed", name=name)

        logger.info(f"Tool {name} executed", extra={"context": {"ok": result.ok, "business_id": str(self.business.id)}})
        return result

    def check_availability(self, args: CheckAvailabilityArgs) -> ToolResult:
        duration = None
        if args.service_id:
            service = appointment_service.find_service(self.db, self.business.id, service_id=args.service_id)
            if service:
                duration = service.duration_minutes
        day = args.date.isoformat()
        if appointment_service.opening_window(self.business, args.date) is None:
            closed = {"slots": [], "message": f"The business is closed on {day}."}
            return ToolResult.success(closed, name="check_availability")
        slots = appointment_service.get_availability(self.db, self.business, args.date, duration)
        if not slots:
            message = f"No available slots on {day}."
        else:
            message = f"Available slots on {day} (UTC): {', '.join(slots)}"
        return ToolResult.success({"slots": slots, "message": message}, name="check_availability")

    def book_appointment(self, args: BookAppointmentArgs) -> ToolResult:
        zone = business_zone(self.business)
        if args.start_time is not None:
            start = args.start_time
            if start.tzinfo is None:
                start = appointment_service.localize(start, zone)
        else:
            start = appointment_service.localize(datetime.combine(args.date, args.time), zone)

        service = appointment_service.find_service(self.db, self.business.id, name=args.service_name)
        if args.duration is not None:
            duration = args.duration
        elif service is not None:
            duration = service.duration_minutes
        else:
            duration = appointment_service.DEFAULT_DURATION_MINUTES

        customer = self.customer
        if args.customer_name and not customer.name:
            customer.name = args.customer_name
        if args.customer_phone and not customer.phone:
            customer.phone = args.customer_phone
        if args.customer_email and not customer.email:
            customer.email = args.customer_email

        appointment = appointment_service.create_appointment(
            self.db,
            self.business,
            customer,
            service_name=service.name if service else args.service_name,
            start_time=start,
            duration=duration,
            service_id=service.id if service else None,
            conversation_id=self.conversation.id if self.conversation else None,
            notes=args.notes,
        )
        local_start = appointment.start_time.astimezone(zone)
        message = (
            f"Appointment booked for {local_start.strftime('%Y-%m-%d')} at {local_start.strftime('%H:%M')} "
            f"({zone.key}) for {appointment.service_name}, {appointment.duration} minutes. "
            f"Confirmation id: {appointment.id}"
        )
        return ToolResult.success(
            {
                "appointment_id": str(appointment.id),
                "start_time": appointment_service.to_iso_utc(appointment.start_time),
                "end_time": appointment_service.to_iso_utc(appointment.end_time),
                "message": message,
            },
            name="book_appointment",
        )

    def escalate_to_human(self, args: EscalateArgs) -> ToolResult:
        if self.conversation is None:
            return ToolResult.failure("No conversation to escalate", "invalid_transition", name="escalate_to_human")
        conversation_service.escalate_conversation(self.db, self.conversation, args.reason)
        return ToolResult.success("Conversation escalated to human agent", name="escalate_to_human", escalated=True)
