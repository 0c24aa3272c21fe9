from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from frontdesk.logging_config import get_logger
from frontdesk.models import Appointment, Business, Customer, Service
from frontdesk.schemas.tools import MIN_APPOINTMENT_MINUTES
from frontdesk.services.errors import DuplicateBooking, ToolExecutionError
from frontdesk.services.prompt_builder import DAYS, business_zone

logger = get_logger("appointment_service")

SLOT_MINUTES = 30
DEFAULT_DURATION_MINUTES = 60
# Everything except CANCELED occupies the calendar
BLOCKING_STATUSES = ("SCHEDULED", "CONFIRMED", "COMPLETED", "NO_SHOW")


def to_iso_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def localize(naive: datetime, zone: ZoneInfo) -> datetime:
    """Attach the tenant zone to a wall-clock time. Times skipped by a DST change are rejected."""
    aware = naive.replace(tzinfo=zone)
    round_trip = aware.astimezone(timezone.utc).astimezone(zone).replace(tzinfo=None)
    if round_trip != naive:
        raise ToolExecutionError(f"{naive.isoformat()} does not exist in {zone.key}", code="invalid_time")
    return aware


def _parse_clock(value) -> Optional[time]:
    if not isinstance(value, str):
        return None
    try:
        return time.fromisoformat(value.strip())
    except ValueError:
        return None


def opening_window(business: Business, day: date) -> Optional[tuple[datetime, datetime]]:
    """(open, close) as aware datetimes in the tenant zone, or None when the business is closed."""
    hours = business.business_hours if isinstance(business.business_hours, dict) else {}
    entry = hours.get(DAYS[day.weekday()])
    if not isinstance(entry, dict):
        return None
    open_at, close_at = _parse_clock(entry.get("open")), _parse_clock(entry.get("close"))
    if open_at is None or close_at is None or close_at <= open_at:
        return None
    zone = business_zone(business)
    return (
        datetime.combine(day, open_at, tzinfo=zone),
        datetime.combine(day, close_at, tzinfo=zone),
    )


def blocking_appointments(
    db: Session, business_id: UUID, window_start: datetime, window_end: datetime
) -> list[Appointment]:
    return (
        db.query(Appointment)
        .filter(
            Appointment.business_id == business_id,
            Appointment.status.in_(BLOCKING_STATUSES),
            Appointment.start_time < window_end,
            Appointment.end_time > window_start,
        )
        .all()
    )


def get_availability(
    db: Session,
    business: Business,
    day: date,
    duration_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[str]:
    """Free slot start times (ISO-8601 UTC) on the 30-minute grid for a local calendar day."""
    window = opening_window(business, day)
    if window is None:
        return []

    open_at, close_at = (w.astimezone(timezone.utc) for w in window)
    duration = timedelta(minutes=duration_minutes or SLOT_MINUTES)
    step = timedelta(minutes=SLOT_MINUTES)
    now = now or datetime.now(timezone.utc)
    booked = blocking_appointments(db, business.id, open_at, close_at)

    slots = []
    start = open_at
    while start + duration <= close_at:
        end = start + duration
        if start >= now and not any(a.start_time < end and a.end_time > start for a in booked):
            slots.append(to_iso_utc(start))
        start += step
    return slots


def find_service(
    db: Session, business_id: UUID, service_id: Optional[str] = None, name: Optional[str] = None
) -> Optional[Service]:
    query = db.query(Service).filter(Service.business_id == business_id)
    if service_id:
        try:
            return query.filter(Service.id == UUID(str(service_id))).first()
        except ValueError:
            return None
    if not name:
        return None
    needle = name.strip().lower()
    exact = query.filter(func.lower(Service.name) == needle).first()
    if exact:
        return exact
    for service in query.all():
        if needle in service.name.lower() or service.name.lower() in needle:
            return service
    return None


def create_appointment(
    db: Session,
    business: Business,
    customer: Customer,
    service_name: str,
    start_time: datetime,
    duration: int,
    service_id: Optional[UUID] = None,
    conversation_id: Optional[UUID] = None,
    notes: Optional[str] = None,
) -> Appointment:
    """Create a SCHEDULED appointment. end_time is always start_time + duration."""
    if duration < MIN_APPOINTMENT_MINUTES:
        raise ToolExecutionError(
            f"Appointments must be at least {MIN_APPOINTMENT_MINUTES} minutes", code="invalid_duration"
        )
    if start_time.tzinfo is None:
        raise ToolExecutionError("Appointment start time must carry a timezone", code="invalid_time")

    start_utc = start_time.astimezone(timezone.utc)
    existing = (
        db.query(Appointment)
        .filter(
            Appointment.business_id == business.id,
            Appointment.customer_id == customer.id,
            Appointment.start_time == start_utc,
            Appointment.status.in_(BLOCKING_STATUSES),
        )
        .first()
    )
    if existing:
        raise DuplicateBooking(f"An appointment at {to_iso_utc(start_utc)} is already booked for this customer")

    appointment = Appointment(
        business_id=business.id,
        customer_id=customer.id,
        conversation_id=conversation_id,
        service_id=service_id,
        service_name=service_name,
        start_time=start_utc,
        end_time=start_utc + timedelta(minutes=duration),
        duration=duration,
        timezone=business.timezone or "America/New_York",
        status="SCHEDULED",
        notes=notes,
    )
    db.add(appointment)
    db.flush()

    logger.info(
        "Appointment booked",
        extra={
            "context": {
                "business_id": str(business.id),
                "appointment_id": str(appointment.id),
                "start_time": to_iso_utc(start_utc),
                "duration": duration,
            }
        },
    )
    return appointment
