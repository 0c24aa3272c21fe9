from typing import Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from frontdesk.database import dialect_insert, utcnow
from frontdesk.logging_config import get_logger
from frontdesk.models import Integration
from frontdesk.schemas.inbound import Channel
from frontdesk.services.crypto_service import CredentialCipher

logger = get_logger("integration_service")


def find_for_business(db: Session, business_id: UUID, channel: Union[Channel, str]) -> Optional[Integration]:
    """Active integration used to send on behalf of a tenant."""
    return (
        db.query(Integration)
        .filter(
            Integration.business_id == business_id,
            Integration.type == Channel(channel).value,
            Integration.is_active.is_(True),
        )
        .order_by(Integration.updated_at.desc())
        .first()
    )


def find_by_platform_id(db: Session, channel: Union[Channel, str], platform_id: str) -> Optional[Integration]:
    """Active integration that owns an inbound phone-number id or page id."""
    return (
        db.query(Integration)
        .filter(
            Integration.type == Channel(channel).value,
            Integration.platform_id == platform_id,
            Integration.is_active.is_(True),
        )
        .order_by(Integration.updated_at.desc())
        .first()
    )


def upsert_integration(
    db: Session,
    cipher: CredentialCipher,
    business_id: UUID,
    channel: Union[Channel, str],
    platform_id: str,
    access_token: str,
) -> Integration:
    """Connect a channel account, or refresh its token and reactivate it on reconnect."""
    channel = Channel(channel)
    now = utcnow()
    encrypted = cipher.encrypt(access_token)
    stmt = dialect_insert(db, Integration).values(
        business_id=business_id,
        type=channel.value,
        platform_id=platform_id,
        access_token=encrypted,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["business_id", "type", "platform_id"],
        set_={"access_token": encrypted, "is_active": True, "updated_at": now},
    )
    db.execute(stmt)
    integration = (
        db.query(Integration)
        .filter(
            Integration.business_id == business_id,
            Integration.type == channel.value,
            Integration.platform_id == platform_id,
        )
        .populate_existing()
        .one()
    )
    logger.info(
        "Integration connected",
        extra={"context": {"business_id": str(business_id), "channel": channel.value, "platform_id": platform_id}},
    )
    return integration
