import uuid
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from frontdesk.database import dialect_insert, utcnow
from frontdesk.logging_config import get_logger
from frontdesk.models import Conversation, Message
from frontdesk.schemas.inbound import Channel
from frontdesk.services.state_machine import ConversationStatus, transition as check_transition

logger = get_logger("conversation_service")

REPLAYED_ROLES = ("USER", "ASSISTANT", "HUMAN")
MODEL_ROLES = {"USER": "user", "ASSISTANT": "assistant", "HUMAN": "assistant"}


def _channel_value(channel: Union[Channel, str]) -> str:
    return channel.value if isinstance(channel, Channel) else str(channel)


def find_active(
    db: Session, business_id: UUID, customer_id: UUID, channel: Union[Channel, str]
) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(
            Conversation.business_id == business_id,
            Conversation.customer_id == customer_id,
            Conversation.channel == _channel_value(channel),
            Conversation.status == ConversationStatus.ACTIVE.value,
        )
        .first()
    )


def open_conversation(
    db: Session, business_id: UUID, customer_id: UUID, channel: Union[Channel, str]
) -> tuple[Conversation, bool]:
    """Return the ACTIVE conversation, creating it if needed. The flag is True when this call created it.

    The partial unique index on (business_id, customer_id, channel) WHERE status = 'ACTIVE'
    arbitrates concurrent creators: the loser's insert is a no-op and it re-reads the winner's row.
    """
    conversation = find_active(db, business_id, customer_id, channel)
    if conversation:
        return conversation, False

    now = utcnow()
    stmt = (
        dialect_insert(db, Conversation)
        .values(
            id=uuid.uuid4(),
            business_id=business_id,
            customer_id=customer_id,
            channel=_channel_value(channel),
            status=ConversationStatus.ACTIVE.value,
            started_at=now,
            last_message_at=now,
        )
        .on_conflict_do_nothing(
            index_elements=["business_id", "customer_id", "channel"],
            index_where=text("status = 'ACTIVE'"),
        )
    )
    created = db.execute(stmt).rowcount > 0
    conversation = find_active(db, business_id, customer_id, channel)
    if conversation is None:
        # Lost the race and the winner's row is no longer ACTIVE; one more attempt.
        return open_conversation(db, business_id, customer_id, channel)
    if created:
        logger.info(
            "Conversation opened",
            extra={"context": {"business_id": str(business_id), "conversation_id": str(conversation.id)}},
        )
    return conversation, created


def get_or_create_active(
    db: Session, business_id: UUID, customer_id: UUID, channel: Union[Channel, str]
) -> Conversation:
    """Find active conversation or create new one."""
    conversation, _ = open_conversation(db, business_id, customer_id, channel)
    return conversation


def get_conversation(db: Session, business_id: UUID, conversation_id: UUID) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id, Conversation.business_id == business_id)
        .first()
    )


def find_by_call_id(db: Session, business_id: UUID, call_id: str) -> Optional[Conversation]:
    """The VOICE conversation already bound to a telephony call, newest first."""
    return (
        db.query(Conversation)
        .filter(
            Conversation.business_id == business_id,
            Conversation.channel == Channel.VOICE.value,
            Conversation.call_id == call_id,
        )
        .order_by(Conversation.started_at.desc())
        .first()
    )


def append_message(
    db: Session,
    conversation: Conversation,
    role: str,
    content: str,
    metadata: Optional[dict] = None,
    platform_message_id: Optional[str] = None,
) -> Optional[Message]:
    """Store a message in the conversation.

    Returns None when a message with the same platform id was already stored for this
    tenant and channel.
    """
    now = utcnow()
    if platform_message_id:
        message_id = uuid.uuid4()
        table = Message.__table__
        stmt = (
            dialect_insert(db, table)
            .values(
                id=message_id,
                conversation_id=conversation.id,
                business_id=conversation.business_id,
                channel=conversation.channel,
                role=role,
                content=content,
                platform_message_id=platform_message_id,
                metadata=metadata or {},
                created_at=now,
            )
            .on_conflict_do_nothing(
                index_elements=["business_id", "channel", "platform_message_id"],
                index_where=text("platform_message_id IS NOT NULL"),
            )
        )
        if db.execute(stmt).rowcount == 0:
            logger.info(
                "Duplicate platform message ignored",
                extra={
                    "context": {"conversation_id": str(conversation.id), "platform_message_id": platform_message_id}
                },
            )
            return None
        message = db.get(Message, message_id)
    else:
        message = Message(
            conversation_id=conversation.id,
            business_id=conversation.business_id,
            channel=conversation.channel,
            role=role,
            content=content,
            message_metadata=metadata or {},
            created_at=now,
        )
        db.add(message)

    conversation.last_message_at = now
    db.flush()
    return message


def load_history(db: Session, conversation_id: UUID, window: int) -> list[dict]:
    """Most recent `window` replayable messages, oldest first, as model turns."""
    if window <= 0:
        return []
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id, Message.role.in_(REPLAYED_ROLES))
        .order_by(Message.created_at.desc())
        .limit(window)
        .all()
    )
    return [{"role": MODEL_ROLES[m.role], "content": m.content} for m in reversed(rows)]


def transition(
    db: Session,
    conversation: Conversation,
    new_status: Union[ConversationStatus, str],
    reason: Optional[str] = None,
    assigned_user_id: Optional[str] = None,
) -> Conversation:
    """Move the conversation to a new status. Raises InvalidTransitionError and leaves the row untouched."""
    target = ConversationStatus(new_status)
    check_transition(ConversationStatus(conversation.status), target, reason)

    now = utcnow()
    conversation.status = target.value
    if target == ConversationStatus.ESCALATED:
        conversation.escalate_reason = reason.strip()
        conversation.escalated_at = now
        if assigned_user_id:
            conversation.assigned_user_id = assigned_user_id
    elif target == ConversationStatus.RESOLVED:
        conversation.resolved_at = now
    db.flush()

    logger.info(
        f"Conversation {conversation.id} -> {target.value}",
        extra={"context": {"business_id": str(conversation.business_id), "reason": reason}},
    )
    return conversation


def escalate_conversation(
    db: Session, conversation: Conversation, reason: str, assigned_user_id: Optional[str] = None
) -> Conversation:
    return transition(db, conversation, ConversationStatus.ESCALATED, reason, assigned_user_id)


def resolve_conversation(db: Session, conversation: Conversation) -> Conversation:
    return transition(db, conversation, ConversationStatus.RESOLVED)
