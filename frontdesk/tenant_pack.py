"""Load a tenant from a YAML pack: business profile, service catalog, channel accounts and knowledge.

Usage:
  python -m frontdesk.tenant_pack tenants/acme_spa.yaml
  python -m frontdesk.tenant_pack tenants/acme_spa.yaml --validate-only
  python -m frontdesk.tenant_pack tenants/acme_spa.yaml --skip-knowledge
"""

import argparse
import os
import sys
import uuid
from pathlib import Path
from typing import Optional

import yaml
from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.database import SessionLocal
from frontdesk.logging_config import get_logger, setup_logging
from frontdesk.models import Business, Service
from frontdesk.schemas.inbound import Channel
from frontdesk.services.crypto_service import CredentialCipher, build_cipher
from frontdesk.services.integration_service import upsert_integration
from frontdesk.services.knowledge_service import KnowledgeGateway

logger = get_logger("tenant_pack")

REQUIRED_FIELDS = [
    "business.name",
    "business.timezone",
    "business.business_hours",
]

AI_FIELDS = {
    "personality": "ai_personality",
    "greeting": "ai_greeting",
    "instructions": "ai_instructions",
    "tone": "ai_tone",
    "response_length": "ai_response_length",
    "fallback_message": "ai_fallback_message",
}
PROFILE_FIELDS = ("name", "industry", "phone", "email", "address", "website", "timezone", "business_hours")

_MISSING = object()


def _get_nested_value(data: dict, path: str):
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return _MISSING
        current = current[key]
    return current


def load_tenant_pack(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def validate_pack(pack: dict) -> list[str]:
    """Problems that would make the pack unusable; empty when valid."""
    errors = [f"missing {path}" for path in REQUIRED_FIELDS if _get_nested_value(pack, path) in (_MISSING, None, "")]
    for i, service in enumerate(pack.get("services") or []):
        if not isinstance(service, dict) or not service.get("name"):
            errors.append(f"services[{i}]: name is required")
        elif int(service.get("duration_minutes", 60)) < 15:
            errors.append(f"services[{i}]: duration_minutes must be at least 15")
    for i, integration in enumerate(pack.get("integrations") or []):
        if not isinstance(integration, dict):
            errors.append(f"integrations[{i}]: must be a mapping")
            continue
        if integration.get("type") not in {c.value for c in (Channel.WHATSAPP, Channel.INSTAGRAM, Channel.FACEBOOK)}:
            errors.append(f"integrations[{i}]: type must be WHATSAPP, INSTAGRAM or FACEBOOK")
        if not integration.get("platform_id"):
            errors.append(f"integrations[{i}]: platform_id is required")
        if not (integration.get("access_token_env") or integration.get("access_token")):
            errors.append(f"integrations[{i}]: access_token_env is required")
    return errors


def _apply_business(db: Session, data: dict) -> Business:
    business = None
    if data.get("id"):
        business = db.get(Business, uuid.UUID(str(data["id"])))
    if business is None:
        business = db.query(Business).filter(Business.name == data["name"]).first()
    if business is None:
        business = Business(id=uuid.UUID(str(data["id"])) if data.get("id") else uuid.uuid4(), name=data["name"])
        db.add(business)

    for field in PROFILE_FIELDS:
        if field in data:
            setattr(business, field, data[field])
    ai = data.get("ai") or {}
    for key, column in AI_FIELDS.items():
        if key in ai:
            setattr(business, column, ai[key])
    keywords = ai.get("escalation_keywords")
    if isinstance(keywords, list):
        business.ai_escalation_keywords = ", ".join(str(k) for k in keywords)
    elif keywords:
        business.ai_escalation_keywords = str(keywords)
    if data.get("services_text"):
        business.services_text = data["services_text"]
    db.flush()
    return business


def _apply_services(db: Session, business: Business, services: list[dict]) -> None:
    for item in services:
        service = db.query(Service).filter(Service.business_id == business.id, Service.name == item["name"]).first()
        if service is None:
            service = Service(business_id=business.id, name=item["name"])
            db.add(service)
        service.description = item.get("description")
        service.category = item.get("category")
        service.duration_minutes = int(item.get("duration_minutes", 60))
        service.price = item.get("price")
        service.is_bookable = bool(item.get("is_bookable", True))
    db.flush()


def _integration_token(item: dict) -> Optional[str]:
    env_name = item.get("access_token_env")
    if env_name:
        return os.environ.get(env_name)
    return item.get("access_token")


def apply_tenant_pack(
    db: Session,
    pack: dict,
    cipher: Optional[CredentialCipher] = None,
    knowledge: Optional[KnowledgeGateway] = None,
    base_dir: Optional[Path] = None,
) -> Business:
    """Create or update the tenant described by the pack. The caller commits."""
    business = _apply_business(db, pack["business"])
    _apply_services(db, business, pack.get("services") or [])

    for item in pack.get("integrations") or []:
        token = _integration_token(item)
        if not token:
            logger.warning(f"Skipping {item['type']} integration: token not available")
            continue
        if cipher is None:
            raise ValueError("ENCRYPTION_KEY must be set to store channel credentials")
        upsert_integration(db, cipher, business.id, item["type"], str(item["platform_id"]), token)

    if knowledge is not None:
        for doc in pack.get("knowledge") or []:
            text = doc.get("text")
            if not text and doc.get("path"):
                text = ((base_dir or Path.cwd()) / doc["path"]).read_text(encoding="utf-8")
            if text:
                knowledge.index_document(business.id, str(doc.get("doc_id") or doc.get("path")), text)

    logger.info(f"Tenant pack applied: {business.name}", extra={"context": {"business_id": str(business.id)}})
    return business


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Load a tenant from a YAML pack")
    parser.add_argument("path", type=Path)
    parser.add_argument("--validate-only", action="store_true")
    parser.add_argument("--skip-knowledge", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(settings.log_level)
    pack = load_tenant_pack(args.path)
    errors = validate_pack(pack)
    if errors:
        for error in errors:
            print(f"ERROR: {error}", file=sys.stderr)
        return 1
    if args.validate_only:
        print("OK")
        return 0

    knowledge = None if args.skip_knowledge else KnowledgeGateway.from_settings(settings)
    db = SessionLocal()
    try:
        business = apply_tenant_pack(
            db, pack, cipher=build_cipher(settings.encryption_key), knowledge=knowledge, base_dir=args.path.parent
        )
        db.commit()
        print(f"{business.name}: {business.id}")
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
