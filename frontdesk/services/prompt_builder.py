"""System prompt assembly for the front-desk assistant."""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from frontdesk.models import Business, Customer

DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_FALLBACK_MESSAGE = (
    "I'm sorry, I'm having trouble responding right now. "
    "Please try again in a moment or contact us directly."
)
NO_KNOWLEDGE = "No specific knowledge available."

RESPONSE_LENGTH_GUIDANCE = {
    "brief": "Keep replies to one or two short sentences.",
    "moderate": "Keep replies concise, a short paragraph at most.",
    "detailed": "Give complete, detailed answers when the question calls for it.",
}


def business_zone(business: Business) -> ZoneInfo:
    try:
        return ZoneInfo(business.timezone or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def format_hours(hours) -> str:
    """Operating hours as "monday: 09:00 - 17:00, ..."; closed or incomplete days are omitted."""
    if not isinstance(hours, dict):
        return "Not specified"
    formatted = []
    for day in DAYS:
        entry = hours.get(day)
        if isinstance(entry, dict) and entry.get("open") and entry.get("close"):
            formatted.append(f"{day}: {entry['open']} - {entry['close']}")
    return ", ".join(formatted) or "Not specified"


def fallback_message(business: Business) -> str:
    return (business.ai_fallback_message or "").strip() or DEFAULT_FALLBACK_MESSAGE


def escalation_keywords(business: Business) -> list[str]:
    raw = business.ai_escalation_keywords or ""
    return [k.strip() for k in raw.split(",") if k.strip()]


def _services_block(business: Business) -> str:
    lines = []
    for service in getattr(business, "services", None) or []:
        if not service.is_bookable:
            continue
        line = f"- {service.name} ({service.duration_minutes} min"
        if service.price is not None:
            line += f", ${service.price}"
        lines.append(line + f", id: {service.id})")
    if business.services_text:
        lines.append(business.services_text.strip())
    return "\n".join(lines) or "Not specified"


def build_system_prompt(
    business: Business,
    customer: Optional[Customer],
    knowledge: str,
    now: Optional[datetime] = None,
) -> str:
    zone = business_zone(business)
    local_now = (now or datetime.now(zone)).astimezone(zone)
    industry = (business.industry or "service").lower().replace("_", " ")
    personality = business.ai_personality or "professional"
    length = RESPONSE_LENGTH_GUIDANCE.get(
        business.ai_response_length or "moderate", RESPONSE_LENGTH_GUIDANCE["moderate"]
    )

    sections = [
        f"You are the AI assistant for {business.name}, a {industry} business.",
        "",
        "BUSINESS INFORMATION:",
        f"- Name: {business.name}",
        f"- Phone: {business.phone or 'Not provided'}",
        f"- Email: {business.email or 'Not provided'}",
        f"- Address: {business.address or 'Not provided'}",
        f"- Website: {business.website or 'Not provided'}",
        f"- Hours: {format_hours(business.business_hours)}",
        f"- Current local time: {local_now.strftime('%A, %Y-%m-%d %H:%M')} ({zone.key})",
        "",
        "SERVICES:",
        _services_block(business),
        "",
        "RELEVANT KNOWLEDGE:",
        knowledge.strip() if knowledge and knowledge.strip() else NO_KNOWLEDGE,
        "",
        "CUSTOMER CONTEXT:",
        f"- Name: {(customer.name if customer else None) or 'Unknown'}",
        f"- Previous visits: {(customer.visit_count if customer else 0) or 0}",
    ]
    if customer and customer.notes:
        sections.append(f"- Notes: {customer.notes}")

    sections += [
        "",
        "YOUR CAPABILITIES:",
        "1. Answer questions using the knowledge above",
        "2. Check appointment availability (check_availability)",
        "3. Book appointments (book_appointment)",
        "4. Escalate to a human (escalate_to_human)",
        "",
        "RULES:",
        f"- Be helpful, {personality}, and concise",
    ]
    if business.ai_tone:
        sections.append(f"- Tone: {business.ai_tone}")
    sections += [
        f"- {length}",
        "- Use the knowledge base to answer accurately",
        "- Don't make up information; if you don't know, say so",
        "- Check availability before booking and only offer slots it returned",
        "- Dates are YYYY-MM-DD and times HH:MM in the business's local time",
        "- For appointments, always confirm date, time, and service",
        "- Escalate complaints or complex issues to a human with a short reason",
    ]

    keywords = escalation_keywords(business)
    if keywords:
        sections.append(
            f"- If the customer mentions any of: {', '.join(keywords)}, offer to connect them with a human"
        )
    sections.append(f'- If you cannot help, reply with: "{fallback_message(business)}"')

    if business.ai_greeting:
        sections += ["", "GREETING (use for a first message):", business.ai_greeting]
    if business.ai_instructions:
        sections += ["", "ADDITIONAL INSTRUCTIONS:", business.ai_instructions]

    return "\n".join(sections)


def build_messages(system_prompt: str, history: list[dict], user_message: str) -> list[dict]:
    return [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": user_message}]
