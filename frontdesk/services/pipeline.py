"""Inbound message pipeline: identity -> conversation -> orchestrator -> dispatch.

Webhook messages arrive through the inbound queue worker; web chat calls
`process_webchat` inside the HTTP request.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from frontdesk.logging_config import LoggerAdapter, get_logger
from frontdesk.models import Business, Conversation, Customer
from frontdesk.schemas.inbound import Channel, CustomerHints, InboundMessage
from frontdesk.services import conversation_service, identity_service
from frontdesk.services.alert_service import alert_error
from frontdesk.services.crypto_service import build_cipher
from frontdesk.services.dispatch_service import DeliveryResult, Dispatcher
from frontdesk.services.errors import DuplicateMessage, NotFoundError, StorageError
from frontdesk.services.knowledge_service import KnowledgeGateway
from frontdesk.services.llm import OpenAIProvider
from frontdesk.services.meta_service import MetaTransport
from frontdesk.services.orchestrator import AssistantReply, ResponseOrchestrator
from frontdesk.services.prompt_builder import fallback_message
from frontdesk.services.state_machine import ConversationStatus, is_terminal

logger = get_logger("pipeline")

OUTCOME_REPLIED = "REPLIED"
OUTCOME_DUPLICATE = "DUPLICATE"
OUTCOME_INVALID = "INVALID"
OUTCOME_FAILED = "FAILED"


@dataclass
class PipelineOutcome:
    status: str
    business_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    reply: Optional[AssistantReply] = None
    delivery: Optional[DeliveryResult] = None
    error: Optional[str] = None

    @property
    def content(self) -> str:
        if self.delivery is not None:
            return self.delivery.content
        return self.reply.content if self.reply else ""


class Pipeline:
    def __init__(self, orchestrator: ResponseOrchestrator, dispatcher: Dispatcher, settings):
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.settings = settings

    def _store_user_turn(
        self,
        db: Session,
        business: Business,
        customer: Customer,
        conversation: Conversation,
        created: bool,
        text: str,
        platform_message_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> list[dict]:
        """Persist the USER message and return the prior history. Raises DuplicateMessage on redelivery."""
        history = conversation_service.load_history(db, conversation.id, self.settings.history_window)
        stored = conversation_service.append_message(
            db, conversation, "USER", text, metadata=metadata, platform_message_id=platform_message_id
        )
        if stored is None:
            db.rollback()
            raise DuplicateMessage(platform_message_id)
        identity_service.touch_customer(db, customer, new_conversation=created)
        business.monthly_interactions = (business.monthly_interactions or 0) + 1
        db.commit()
        return history

    def _store_reply(
        self,
        db: Session,
        conversation: Conversation,
        content: str,
        reply: AssistantReply,
        delivery: Optional[DeliveryResult] = None,
    ) -> None:
        metadata = reply.as_metadata()
        if delivery is not None:
            metadata["delivery"] = delivery.as_metadata()
        conversation_service.append_message(db, conversation, "ASSISTANT", content, metadata=metadata)
        db.commit()

    def process_inbound(self, db: Session, message: InboundMessage) -> PipelineOutcome:
        """Run one queued channel message end to end.

        Raises StorageError only while nothing has been committed, so the caller may retry the job.
        """
        log = LoggerAdapter(
            logger,
            {
                "business_id": str(message.business_id),
                "channel": message.channel.value,
                "platform_message_id": message.platform_message_id,
            },
        )
        business = db.get(Business, message.business_id)
        if business is None:
            log.warning("Inbound message for unknown business dropped")
            return PipelineOutcome(status=OUTCOME_INVALID, error="unknown_business")

        try:
            customer = identity_service.resolve_customer(
                db, business.id, message.channel, message.channel_sender_id, message.hints
            )
            conversation, created = conversation_service.open_conversation(
                db, business.id, customer.id, message.channel
            )
            history = self._store_user_turn(
                db,
                business,
                customer,
                conversation,
                created,
                message.text,
                platform_message_id=message.platform_message_id,
                metadata={"received_at": message.received_at.isoformat()},
            )
        except DuplicateMessage:
            log.info("Duplicate message, pipeline stopped")
            return PipelineOutcome(status=OUTCOME_DUPLICATE, business_id=business.id)
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to store inbound message: {e}")
            raise StorageError("Failed to store inbound message") from e

        log = log.bind(conversation_id=str(conversation.id))
        outcome = PipelineOutcome(
            status=OUTCOME_REPLIED,
            business_id=business.id,
            conversation_id=conversation.id,
            customer_id=customer.id,
        )
        try:
            reply = self.orchestrator.respond(db, business, customer, conversation, history, message.text)
            # Tool side effects (bookings, escalation) become durable before delivery
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Storage failure while generating reply: {e}")
            alert_error("Storage failure in inbound pipeline", {"business_id": business.id, "error": str(e)})
            outcome.status = OUTCOME_FAILED
            outcome.error = "storage_error"
            outcome.delivery = self.dispatcher.send(
                db, business.id, message.channel, message.channel_sender_id, fallback_message(business)
            )
            return outcome

        outcome.reply = reply
        outcome.delivery = self.dispatcher.send(
            db, business.id, message.channel, message.channel_sender_id, reply.content
        )
        try:
            self._store_reply(db, conversation, outcome.delivery.content, reply, outcome.delivery)
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to store assistant reply: {e}")
            alert_error("Assistant reply not stored", {"conversation_id": conversation.id, "error": str(e)})
            outcome.status = OUTCOME_FAILED
            outcome.error = "storage_error"
            return outcome

        if not outcome.delivery.ok:
            outcome.error = outcome.delivery.error
        log.info(
            "Inbound message processed",
            context={
                "delivered": outcome.delivery.ok,
                "fallback_used": reply.fallback_used,
            },
        )
        return outcome

    def process_webchat(
        self,
        db: Session,
        business_id: UUID,
        text: str,
        customer_id: Optional[UUID] = None,
        conversation_id: Optional[UUID] = None,
        hints: Optional[CustomerHints] = None,
    ) -> PipelineOutcome:
        """Synchronous web chat turn. Raises NotFoundError for unknown ids and StorageError on storage failure."""
        log = LoggerAdapter(logger, {"business_id": str(business_id), "channel": Channel.WEBCHAT.value})
        business = db.get(Business, business_id)
        if business is None:
            raise NotFoundError(f"Business {business_id} not found")

        try:
            conversation, customer, created = self._webchat_conversation(
                db, business, customer_id, conversation_id, hints
            )
            history = self._store_user_turn(db, business, customer, conversation, created, text)
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to store web chat message: {e}")
            raise StorageError("Failed to store message") from e

        log = log.bind(conversation_id=str(conversation.id))
        try:
            reply = self.orchestrator.respond(db, business, customer, conversation, history, text)
            self._store_reply(db, conversation, reply.content, reply)
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Failed to store web chat reply: {e}")
            alert_error("Storage failure in web chat", {"business_id": business.id, "error": str(e)})
            raise StorageError("Failed to store reply") from e

        log.info(
            "Web chat message processed",
            context={"fallback_used": reply.fallback_used},
        )
        return PipelineOutcome(
            status=OUTCOME_REPLIED,
            business_id=business.id,
            conversation_id=conversation.id,
            customer_id=customer.id,
            reply=reply,
        )

    def _webchat_conversation(
        self,
        db: Session,
        business: Business,
        customer_id: Optional[UUID],
        conversation_id: Optional[UUID],
        hints: Optional[CustomerHints],
    ) -> tuple[Conversation, Customer, bool]:
        if conversation_id:
            conversation = conversation_service.get_conversation(db, business.id, conversation_id)
            if conversation is None or conversation.channel != Channel.WEBCHAT.value:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            if customer_id and conversation.customer_id != customer_id:
                raise NotFoundError(f"Conversation {conversation_id} not found for customer {customer_id}")
            customer = db.get(Customer, conversation.customer_id)
            status = ConversationStatus(conversation.status)
            if status == ConversationStatus.ABANDONED:
                return self._reopen_webchat(db, business, customer, conversation), customer, False
            if is_terminal(status):
                conversation, created = conversation_service.open_conversation(
                    db, business.id, customer.id, Channel.WEBCHAT
                )
                return conversation, customer, created
            return conversation, customer, False

        customer = identity_service.resolve_webchat_customer(db, business.id, customer_id, hints)
        conversation, created = conversation_service.open_conversation(db, business.id, customer.id, Channel.WEBCHAT)
        return conversation, customer, created

    def _reopen_webchat(
        self, db: Session, business: Business, customer: Customer, conversation: Conversation
    ) -> Conversation:
        """Continue an abandoned web chat, unless the visitor already has an ACTIVE one, which wins."""
        active = conversation_service.find_active(db, business.id, customer.id, Channel.WEBCHAT)
        if active is not None:
            return active
        try:
            with db.begin_nested():
                conversation_service.transition(db, conversation, ConversationStatus.ACTIVE)
        except IntegrityError:
            # A concurrent request opened an ACTIVE web chat first
            active = conversation_service.find_active(db, business.id, customer.id, Channel.WEBCHAT)
            if active is None:
                raise
            return active
        return conversation


def build_pipeline(settings) -> Pipeline:
    """Wire the production collaborators once; tests construct Pipeline with fakes instead."""
    llm = OpenAIProvider(
        api_key=settings.llm_api_key,
        default_model=settings.llm_model,
        base_url=settings.llm_base_url,
        default_timeout=settings.llm_timeout_seconds,
    )
    orchestrator = ResponseOrchestrator(llm, KnowledgeGateway.from_settings(settings), settings)
    transport = MetaTransport(settings.meta_graph_url, timeout=settings.meta_send_timeout_seconds)
    dispatcher = Dispatcher(transport, build_cipher(settings.encryption_key))
    return Pipeline(orchestrator, dispatcher, settings)
