"""
Availability: the interval conflict checker and the free-slot finder.

Both work on naive business-local datetimes. Intervals are half-open,
``[start, start + duration)``, so back-to-back appointments never conflict.
"""

from datetime import datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from bookingbot.clock import now_local
from bookingbot.config import config
from bookingbot.database import storage_errors
from bookingbot.db_models import ACTIVE_STATUSES, MAX_APPOINTMENT_MINUTES, DBAppointment, DBBusiness
from bookingbot.logging_config import get_logger

logger = get_logger(__name__)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open overlap test: touching boundaries do not overlap."""
    return start_a < end_b and end_a > start_b


def has_conflict(
    db: Session,
    business_id: int,
    candidate_start: datetime,
    duration_minutes: int,
    exclude_appointment_id: Optional[str] = None,
) -> bool:
    """
    Check whether ``[candidate_start, candidate_start + duration)`` overlaps any
    active appointment of the business.

    Bookings are capped at ``MAX_APPOINTMENT_MINUTES``, so the query only looks
    back that far, plus any longer rows (multi-day blocks imported from the
    external calendar), whatever their start.

    Raises:
        CollaboratorUnavailable: the store could not be queried. Callers must
        not treat this as "slot is free".
    """
    candidate_end = candidate_start + timedelta(minutes=duration_minutes)
    window_start = candidate_start - timedelta(minutes=MAX_APPOINTMENT_MINUTES)

    with storage_errors(db, "conflict_check"):
        query = db.query(DBAppointment).filter(
            DBAppointment.business_id == business_id,
            DBAppointment.status.in_(ACTIVE_STATUSES),
            DBAppointment.start_time < candidate_end,
            or_(
                DBAppointment.start_time > window_start,
                DBAppointment.duration > MAX_APPOINTMENT_MINUTES,
            ),
        )
        if exclude_appointment_id:
            query = query.filter(DBAppointment.id != exclude_appointment_id)
        appointments = query.all()

    for appt in appointments:
        if intervals_overlap(candidate_start, candidate_end, appt.start_time, appt.end_time):
            logger.info(
                "conflict_found",
                business_id=business_id,
                requested=candidate_start.isoformat(),
                existing_id=appt.id,
                existing_start=appt.start_time.isoformat(),
            )
            return True

    return False


def parse_hhmm(value: str, default: time) -> time:
    """Parse a ``HH:MM`` working-hours bound, falling back to ``default``."""
    try:
        hour, minute = (value or "").strip().split(":")
        return time(int(hour), int(minute))
    except (ValueError, TypeError):
        return default


def candidate_slots(business: DBBusiness, from_instant: datetime, now: datetime) -> List[datetime]:
    """Every grid slot in the horizon that fits inside working hours, chronological."""
    duration = timedelta(minutes=business.appointment_duration or 30)
    day_start = parse_hhmm(business.work_start, time(9, 0))
    day_end = parse_hhmm(business.work_end, time(18, 0))
    weekdays = business.working_weekdays()

    slots = []
    first_day = from_instant.date()
    for offset in range(config.SLOT_HORIZON_DAYS):
        day = first_day + timedelta(days=offset)
        if weekdays and day.weekday() not in weekdays:
            continue
        slot = datetime.combine(day, day_start)
        close = datetime.combine(day, day_end)
        while slot + duration <= close:
            if slot > now and slot >= from_instant:
                slots.append(slot)
            slot += duration
    return slots


def find_free_slots(
    db: Session,
    business: DBBusiness,
    from_instant: datetime,
    count: int,
    preferred_hour: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[datetime]:
    """
    Find up to ``count`` free slots within the horizon.

    With ``preferred_hour`` the search visits slots closest to that hour first,
    but the result is always returned in chronological order. Fewer than
    ``count`` (or zero) slots is a normal result.
    """
    now = now or now_local()
    candidates = candidate_slots(business, from_instant, now)

    if preferred_hour is not None:
        target = preferred_hour * 60
        candidates.sort(key=lambda s: (abs(s.hour * 60 + s.minute - target), s))

    duration = business.appointment_duration or 30
    free: List[datetime] = []
    for slot in candidates:
        if len(free) >= count:
            break
        if not has_conflict(db, business.id, slot, duration):
            free.append(slot)

    return sorted(free)


def list_busy_intervals(
    db: Session,
    business: DBBusiness,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[DBAppointment]:
    """Upcoming active appointments, earliest first."""
    now = now or now_local()
    with storage_errors(db, "list_busy_intervals"):
        return (
            db.query(DBAppointment)
            .filter(
                DBAppointment.business_id == business.id,
                DBAppointment.status.in_(ACTIVE_STATUSES),
                DBAppointment.start_time >= now,
            )
            .order_by(DBAppointment.start_time)
            .limit(limit or config.CONTEXT_BUSY_SLOTS)
            .all()
        )
