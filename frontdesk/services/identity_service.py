import uuid
from typing import Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from frontdesk.database import dialect_insert, utcnow
from frontdesk.logging_config import get_logger
from frontdesk.models import Customer
from frontdesk.schemas.inbound import CHANNEL_ID_FIELDS, Channel, CustomerHints
from frontdesk.services.errors import NotFoundError

logger = get_logger("identity_service")

# Channel id columns backed by a partial unique index per tenant
UNIQUE_ID_FIELDS = ("whatsapp_id", "instagram_id", "facebook_id")


def _find_by(db: Session, business_id: UUID, field: str, value: str) -> Optional[Customer]:
    return (
        db.query(Customer)
        .filter(Customer.business_id == business_id, getattr(Customer, field) == value)
        .order_by(Customer.created_at)
        .first()
    )


def _fill_missing(customer: Customer, hints: CustomerHints) -> None:
    if hints.name and not customer.name:
        customer.name = hints.name
    if hints.email and not customer.email:
        customer.email = hints.email
    if hints.phone and not customer.phone:
        customer.phone = hints.phone


def _attach_channel_id(db: Session, customer: Customer, field: str, sender_id: str) -> bool:
    """Set the channel id only if it is still empty. Returns False if another writer got there first."""
    column = getattr(Customer, field)
    updated = (
        db.query(Customer)
        .filter(Customer.id == customer.id, column.is_(None))
        .update({field: sender_id}, synchronize_session=False)
    )
    db.refresh(customer)
    return updated > 0


def _lock_first_contact(db: Session, business_id: UUID, field: str, value: str) -> None:
    """Transaction-scoped advisory lock on PostgreSQL; SQLite already serializes writers."""
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(
        text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
        {"key": f"customer:{business_id}:{field}:{value}"},
    )


def _insert_customer(
    db: Session, business_id: UUID, field: Optional[str], sender_id: Optional[str], hints: CustomerHints
) -> Customer:
    customer_id = uuid.uuid4()
    values = {
        "id": customer_id,
        "business_id": business_id,
        "name": hints.name,
        "phone": hints.phone,
        "email": hints.email,
        "visit_count": 0,
        "created_at": utcnow(),
    }
    if field:
        values[field] = sender_id

    stmt = dialect_insert(db, Customer).values(**values)
    if field in UNIQUE_ID_FIELDS:
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["business_id", field],
            index_where=text(f"{field} IS NOT NULL"),
        )
    inserted = db.execute(stmt).rowcount > 0

    if inserted:
        logger.info(
            "Customer created",
            extra={"context": {"business_id": str(business_id), "customer_id": str(customer_id), "field": field}},
        )
        return db.get(Customer, customer_id)
    # Concurrent first contact: the other writer's row wins
    return _find_by(db, business_id, field, sender_id)


def resolve_customer(
    db: Session,
    business_id: UUID,
    channel: Channel,
    channel_sender_id: str,
    hints: Optional[CustomerHints] = None,
) -> Customer:
    """Find or create the customer behind a channel sender id."""
    hints = hints or CustomerHints()
    channel = Channel(channel)
    if channel == Channel.WEBCHAT:
        return resolve_webchat_customer(db, business_id, hints=hints)

    field = CHANNEL_ID_FIELDS[channel]
    if channel == Channel.WHATSAPP and not hints.phone:
        hints = hints.model_copy(update={"phone": channel_sender_id})

    customer = _find_by(db, business_id, field, channel_sender_id)
    if customer:
        _fill_missing(customer, hints)
        db.flush()
        return customer

    if hints.phone and field != "phone":
        candidate = (
            db.query(Customer)
            .filter(
                Customer.business_id == business_id,
                Customer.phone == hints.phone,
                getattr(Customer, field).is_(None),
            )
            .order_by(Customer.created_at)
            .first()
        )
        if candidate:
            if _attach_channel_id(db, candidate, field, channel_sender_id):
                _fill_missing(candidate, hints)
                db.flush()
                logger.info(
                    "Channel id attached to existing customer",
                    extra={"context": {"customer_id": str(candidate.id), "field": field}},
                )
                return candidate
            customer = _find_by(db, business_id, field, channel_sender_id)
            if customer:
                return customer

    if field not in UNIQUE_ID_FIELDS:
        # No unique index to arbitrate (VOICE keys on phone): serialize first contact, then look again
        _lock_first_contact(db, business_id, field, channel_sender_id)
        customer = _find_by(db, business_id, field, channel_sender_id)
        if customer:
            _fill_missing(customer, hints)
            db.flush()
            return customer

    return _insert_customer(db, business_id, field, channel_sender_id, hints)


def create_customer(db: Session, business_id: UUID, hints: Optional[CustomerHints] = None) -> Customer:
    """A customer with no channel id yet, e.g. a browser voice caller."""
    return _insert_customer(db, business_id, None, None, hints or CustomerHints())


def resolve_webchat_customer(
    db: Session,
    business_id: UUID,
    customer_id: Optional[UUID] = None,
    hints: Optional[CustomerHints] = None,
) -> Customer:
    """Web chat has no channel id: use an explicit customer id, else contact hints, else a new customer."""
    hints = hints or CustomerHints()
    if customer_id:
        customer = (
            db.query(Customer).filter(Customer.id == customer_id, Customer.business_id == business_id).first()
        )
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")
        _fill_missing(customer, hints)
        db.flush()
        return customer

    for field in ("email", "phone"):
        value = getattr(hints, field)
        if value:
            customer = _find_by(db, business_id, field, value)
            if customer:
                _fill_missing(customer, hints)
                db.flush()
                return customer

    return _insert_customer(db, business_id, None, None, hints)


def touch_customer(db: Session, customer: Customer, new_conversation: bool = False) -> Customer:
    """Record contact: every message updates last_contact_at, each new conversation counts a visit."""
    customer.last_contact_at = utcnow()
    if new_conversation:
        customer.visit_count = (customer.visit_count or 0) + 1
    db.flush()
    return customer
