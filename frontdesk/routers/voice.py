"""Telephony assistant callbacks: tool calls during a call and the end-of-call report."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.database import get_db
from frontdesk.logging_config import get_logger
from frontdesk.models import Business, Conversation, Customer
from frontdesk.schemas.inbound import Channel, CustomerHints, IngressOutcome
from frontdesk.schemas.voice import VoiceEvent, VoiceToolResult, VoiceWebhookBody
from frontdesk.services import conversation_service, identity_service
from frontdesk.services.alert_service import alert_error
from frontdesk.services.ingress_service import decode_json, record_webhook, verify_voice_secret
from frontdesk.services.state_machine import ConversationStatus, is_terminal
from frontdesk.services.tool_service import ToolExecutor

logger = get_logger("voice")

router = APIRouter(prefix="/webhooks/voice", tags=["voice"])

TOOL_EVENTS = {"tool-calls", "function-call"}
END_OF_CALL = "end-of-call-report"
MSG_BUSINESS_UNKNOWN = "Error (not_found): this assistant is not linked to a business"
MSG_TOOL_UNAVAILABLE = "Error (storage_error): the booking system is temporarily unavailable"


def _business_for(db: Session, event: VoiceEvent) -> Optional[Business]:
    raw_id = event.call.business_id()
    if not raw_id:
        return None
    try:
        return db.get(Business, UUID(raw_id))
    except ValueError:
        return None


def _phone_from_arguments(raw_arguments: str) -> Optional[str]:
    data = decode_json(raw_arguments.encode("utf-8"))
    if isinstance(data, dict):
        value = data.get("customerPhone") or data.get("customer_phone")
        return str(value) if value else None
    return None


def _voice_customer(db: Session, business: Business, event: VoiceEvent, phone_hint: Optional[str] = None) -> Customer:
    number = event.call.caller_number() or phone_hint
    if number:
        return identity_service.resolve_customer(db, business.id, Channel.VOICE, number, CustomerHints(phone=number))
    # Browser call with no number: the call id on the conversation identifies the caller
    return identity_service.create_customer(db, business.id)


def _call_conversation(
    db: Session, business: Business, event: VoiceEvent, phone_hint: Optional[str] = None
) -> tuple[Conversation, Customer, bool]:
    """The conversation bound to this call; the first callback of a call opens it for the caller."""
    call_id = event.call.id
    if call_id:
        conversation = conversation_service.find_by_call_id(db, business.id, call_id)
        if conversation is not None:
            return conversation, db.get(Customer, conversation.customer_id), False

    customer = _voice_customer(db, business, event, phone_hint)
    conversation, created = conversation_service.open_conversation(db, business.id, customer.id, Channel.VOICE)
    if call_id and conversation.call_id != call_id:
        conversation.call_id = call_id
        db.flush()
    return conversation, customer, created


def _tool_calls(event: VoiceEvent) -> list[tuple[str, str, str]]:
    """(tool_call_id, name, raw_arguments) for both callback shapes."""
    if event.type == "function-call":
        if event.function_call is None:
            return []
        call = event.function_call
        return [(call.name, call.name, call.raw_arguments())]
    return [(tc.id, tc.function.name, tc.function.raw_arguments()) for tc in event.tool_call_list]


def handle_tool_calls(db: Session, event: VoiceEvent) -> dict:
    calls = _tool_calls(event)
    business = _business_for(db, event)
    if business is None:
        logger.warning("Voice tool call for unknown business", extra={"context": {"call_id": event.call.id}})
        results = [VoiceToolResult(tool_call_id=c[0], result=MSG_BUSINESS_UNKNOWN) for c in calls]
        return {"results": [r.model_dump(by_alias=True) for r in results]}

    results = []
    try:
        phone_hint = next((p for p in (_phone_from_arguments(c[2]) for c in calls) if p), None)
        conversation, customer, created = _call_conversation(db, business, event, phone_hint)
        if created:
            identity_service.touch_customer(db, customer, new_conversation=True)
        executor = ToolExecutor(db, business, customer, conversation)
        for tool_call_id, name, raw_arguments in calls:
            result = executor.execute(name, raw_arguments)
            results.append(VoiceToolResult(tool_call_id=tool_call_id, result=result.to_text()))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Voice tool call failed: {e}", extra={"context": {"business_id": str(business.id)}})
        alert_error("Voice tool call failed", {"business_id": business.id, "error": str(e)})
        results = [VoiceToolResult(tool_call_id=c[0], result=MSG_TOOL_UNAVAILABLE) for c in calls]

    logger.info(
        "Voice tool calls handled",
        extra={"context": {"business_id": str(business.id), "calls": [c[1] for c in calls]}},
    )
    return {"results": [r.model_dump(by_alias=True) for r in results]}


def handle_end_of_call(db: Session, event: VoiceEvent) -> dict:
    business = _business_for(db, event)
    if business is None:
        logger.warning("End-of-call report for unknown business", extra={"context": {"call_id": event.call.id}})
        return {"received": True}

    try:
        conversation, customer, created = _call_conversation(db, business, event)
        identity_service.touch_customer(db, customer, new_conversation=created)
        transcript = event.full_transcript()
        if transcript:
            conversation_service.append_message(
                db,
                conversation,
                "SYSTEM",
                transcript,
                metadata={"call_id": event.call.id, "summary": event.summary, "ended_reason": event.ended_reason},
            )
        if not is_terminal(ConversationStatus(conversation.status)):
            conversation_service.resolve_conversation(db, conversation)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store call report: {e}", extra={"context": {"business_id": str(business.id)}})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

    logger.info(
        "Call report stored",
        extra={"context": {"business_id": str(business.id), "conversation_id": str(conversation.id)}},
    )
    return {"received": True}


@router.post("")
async def receive_voice_event(request: Request, db: Session = Depends(get_db)):
    raw_body = await request.body()
    secret_valid = verify_voice_secret(request.headers.get("X-Vapi-Secret"), settings.vapi_webhook_secret)
    try:
        record_webhook(db, "voice", raw_body, secret_valid)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record webhook: {e}")

    if not secret_valid:
        logger.warning(
            "Voice webhook rejected: invalid secret",
            extra={"context": {"outcome": IngressOutcome.UNAUTHENTICATED.value}},
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid secret")

    try:
        body = VoiceWebhookBody.model_validate(decode_json(raw_body))
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    event = body.message
    if event.type in TOOL_EVENTS:
        return handle_tool_calls(db, event)
    if event.type == END_OF_CALL:
        return handle_end_of_call(db, event)
    return {"received": True}
