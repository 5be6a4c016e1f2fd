"""
Structured directives carried inside language-model replies.

The model ends a reply with at most one of:

    CONFIRM:2026-02-24T15:00:00|NAME:Dana Cohen
    CANCEL:<appointment-id>
    RESCHEDULE:<appointment-id>|NEW_TIME:2026-02-24T15:00:00|NAME:Dana Cohen

``parse_directive`` turns that text into a tagged variant and
``apply_directive`` executes it and rewrites the reply so no directive syntax
reaches the customer.
"""

import re
from datetime import datetime, time
from typing import Literal, Optional, Union

from pydantic import BaseModel

from bookingbot.clock import now_local, parse_iso
from bookingbot.context import BookingContext
from bookingbot.errors import CollaboratorUnavailable, MalformedDirective, NotFound, SlotUnavailable
from bookingbot.language.messages_he import date_parts, format_short, get_text, is_placeholder_name
from bookingbot.logging_config import get_logger
from bookingbot.scheduling import find_free_slots
from bookingbot.services import AppointmentService

logger = get_logger(__name__)

_TIMESTAMP = r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(?::\d{2})?)"
_APPOINTMENT_ID = r"\[?([A-Za-z0-9-]+)\]?"

CONFIRM_RE = re.compile(r"CONFIRM:\s*\[?" + _TIMESTAMP)
CANCEL_RE = re.compile(r"CANCEL:\s*" + _APPOINTMENT_ID)
RESCHEDULE_RE = re.compile(
    r"RESCHEDULE:\s*" + _APPOINTMENT_ID + r"\s*\|\s*NEW_TIME:\s*\[?" + _TIMESTAMP
)
NAME_RE = re.compile(r"NAME:\s*([^\n|]+)")
KEYWORD_RE = re.compile(r"\b(?:RESCHEDULE|CONFIRM|CANCEL):")
# From a keyword to the end of its line, including the NAME/NEW_TIME tail.
DIRECTIVE_SPAN_RE = re.compile(r"`*\b(?:RESCHEDULE|CONFIRM|CANCEL):[^\n]*")
# NAME/NEW_TIME tails the model put on a line of their own.
ORPHAN_TAIL_RE = re.compile(r"^[ \t`|]*(?:NAME|NEW_TIME):[^\n]*$", re.MULTILINE)
SYSTEM_ANNOTATION_RE = re.compile(r"\[\[SYS:.*?\]\]", re.DOTALL)

ALTERNATIVES_COUNT = 3


class ConfirmDirective(BaseModel):
    kind: Literal["confirm"] = "confirm"
    start: datetime
    name: str


class CancelDirective(BaseModel):
    kind: Literal["cancel"] = "cancel"
    appointment_id: str


class RescheduleDirective(BaseModel):
    kind: Literal["reschedule"] = "reschedule"
    appointment_id: str
    new_start: datetime
    name: Optional[str] = None


Directive = Union[ConfirmDirective, CancelDirective, RescheduleDirective]


def has_directive(text: str) -> bool:
    return bool(KEYWORD_RE.search(text or ""))


def _parse_time(value: str) -> Optional[datetime]:
    try:
        return parse_iso(value)
    except ValueError:
        return None


def _parse_name(text: str) -> Optional[str]:
    match = NAME_RE.search(text)
    if not match:
        return None
    return match.group(1).strip().strip("[]`").strip() or None


def parse_directive(text: str) -> Optional[Directive]:
    """
    Extract the directive carried by ``text``.

    Returns None when there is no directive or its payload is not well formed.

    Raises:
        MalformedDirective: CONFIRM with a missing or placeholder customer name
    """
    if not has_directive(text):
        return None

    match = RESCHEDULE_RE.search(text)
    if match:
        new_start = _parse_time(match.group(2))
        if new_start is None:
            return None
        name = _parse_name(text)
        if name and is_placeholder_name(name):
            name = None
        return RescheduleDirective(appointment_id=match.group(1), new_start=new_start, name=name)

    if "RESCHEDULE:" in text:
        return None

    match = CANCEL_RE.search(text)
    if match:
        return CancelDirective(appointment_id=match.group(1))

    match = CONFIRM_RE.search(text)
    if match:
        start = _parse_time(match.group(1))
        if start is None:
            return None
        name = _parse_name(text)
        if not name or is_placeholder_name(name):
            raise MalformedDirective(f"placeholder customer name: {name!r}", reason="placeholder_name")
        return ConfirmDirective(start=start, name=name)

    return None


def replace_directive(text: str, replacement: str) -> str:
    """Swap the first directive span for ``replacement`` and drop any others."""
    inserted = False

    def _sub(_match):
        nonlocal inserted
        if inserted:
            return ""
        inserted = True
        return replacement

    result = ORPHAN_TAIL_RE.sub("", text or "")
    result = DIRECTIVE_SPAN_RE.sub(_sub, result)
    result = re.sub(r"\n{3,}", "\n\n", result)
    return result.strip()


def strip_system_annotations(text: str) -> str:
    """Remove ``[[SYS:...]]`` markers injected into the model input."""
    return SYSTEM_ANNOTATION_RE.sub("", text or "").strip()


def _booking_confirmation(ctx: BookingContext, appointment) -> str:
    business = ctx.business
    name = appointment.customer_name
    return get_text(
        "booking_confirmed",
        name_part=f" {name}" if name else "",
        duration=appointment.duration,
        business_name=business.name,
        owner_line=f"📞 {business.owner_phone}\n\n" if business.owner_phone else "\n",
        **date_parts(appointment.start_time),
    )


def _slot_taken_message(ctx: BookingContext, requested: datetime) -> str:
    """Apology listing the nearest free slots around the requested hour."""
    now = now_local()
    day_start = datetime.combine(requested.date(), time(0, 0))
    try:
        alternatives = find_free_slots(
            ctx.db,
            ctx.business,
            max(day_start, now),
            ALTERNATIVES_COUNT,
            preferred_hour=requested.hour,
            now=now,
        )
    except CollaboratorUnavailable:
        alternatives = []

    if not alternatives:
        return get_text("slot_taken")
    return get_text("slot_taken_alternatives", alternatives=", ".join(format_short(s) for s in alternatives))


async def execute_directive(ctx: BookingContext, customer_phone: str, directive: Directive) -> str:
    """Run one directive; returns the customer-facing outcome text."""
    if isinstance(directive, ConfirmDirective):
        appointment = await AppointmentService.create(ctx, customer_phone, directive.start, customer_name=directive.name)
        return _booking_confirmation(ctx, appointment)

    if isinstance(directive, CancelDirective):
        await AppointmentService.cancel(ctx, directive.appointment_id, customer_phone=customer_phone)
        return get_text("cancelled")

    appointment = await AppointmentService.reschedule(
        ctx,
        directive.appointment_id,
        directive.new_start,
        customer_phone=customer_phone,
        customer_name=directive.name,
    )
    return get_text("rescheduled", **date_parts(appointment.start_time))


async def apply_directive(ctx: BookingContext, customer_phone: str, reply_text: str) -> str:
    """
    Execute the directive in ``reply_text`` (if any) and return the text to
    send to the customer.

    Domain failures become short Hebrew messages here; they never propagate.
    """
    if not has_directive(reply_text):
        return reply_text

    business_id = ctx.business.id

    try:
        directive = parse_directive(reply_text)
    except MalformedDirective as e:
        logger.info("directive_rejected", business_id=business_id, reason=e.reason, detail=str(e))
        return get_text("ask_real_name")

    if directive is None:
        logger.warning("directive_ignored", business_id=business_id, reason="malformed_payload")
        return replace_directive(reply_text, "") or get_text("directive_unclear")

    logger.info("directive_parsed", business_id=business_id, kind=directive.kind)

    try:
        outcome = await execute_directive(ctx, customer_phone, directive)
    except SlotUnavailable as e:
        logger.info("directive_slot_unavailable", business_id=business_id, kind=directive.kind)
        return replace_directive(reply_text, _slot_taken_message(ctx, e.start))
    except NotFound as e:
        logger.info("directive_appointment_not_found", business_id=business_id, appointment_id=e.appointment_id)
        return replace_directive(reply_text, get_text("appointment_not_found"))
    except CollaboratorUnavailable as e:
        logger.error("directive_failed", business_id=business_id, kind=directive.kind, error=str(e))
        return get_text("technical_error")

    if isinstance(directive, ConfirmDirective):
        # The booking summary supersedes whatever the model wrote around the directive.
        return outcome
    return replace_directive(reply_text, outcome)
