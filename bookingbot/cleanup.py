"""
Retention sweeper: completes past appointments and clears stale data.
Each step commits on its own; a failing step is rolled back and the rest still run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from bookingbot.clock import now_local
from bookingbot.config import config
from bookingbot.context import calendar_for_business
from bookingbot.db_models import ACTIVE_STATUSES, SENTINEL_CUSTOMER, AppointmentStatus, DBAppointment, DBBusiness
from bookingbot.language.messages_he import is_placeholder_name
from bookingbot.logging_config import get_logger
from bookingbot.metrics import cleanup_runs
from bookingbot.services import ConversationService, transition

logger = get_logger(__name__)

# (business_id, google_event_id) of a cancelled appointment that was mirrored to the calendar
CalendarRemoval = Tuple[int, str]


@dataclass
class CleanupReport:
    completed: int = 0
    conversations_purged: int = 0
    placeholders_cancelled: int = 0
    far_future_cancelled: int = 0
    calendar_events_deleted: int = 0
    calendar_removals: List[CalendarRemoval] = field(default_factory=list)
    failed_steps: Dict[str, str] = field(default_factory=dict)


def _active(db: Session):
    return db.query(DBAppointment).filter(DBAppointment.status.in_(ACTIVE_STATUSES))


def complete_past_appointments(db: Session, now: datetime) -> int:
    past = _active(db).filter(DBAppointment.start_time < now).all()
    for appointment in past:
        transition(appointment, AppointmentStatus.COMPLETED, at=now)
    db.commit()
    return len(past)


def purge_old_conversations(db: Session, now: datetime) -> int:
    cutoff = now - timedelta(days=config.CONVERSATION_RETENTION_DAYS)
    return ConversationService.purge_older_than(db, cutoff)


def _cancel(db: Session, appointments: List[DBAppointment], now: datetime) -> List[Tuple[int, Optional[str]]]:
    """Cancel ``appointments`` and return (business_id, google_event_id) for each."""
    cancelled = []
    for appointment in appointments:
        transition(appointment, AppointmentStatus.CANCELLED, at=now)
        cancelled.append((appointment.business_id, appointment.google_event_id))
    db.commit()
    return cancelled


def cancel_placeholder_appointments(db: Session, now: datetime) -> List[Tuple[int, Optional[str]]]:
    named = _active(db).filter(DBAppointment.customer_name.isnot(None)).all()
    placeholders = [a for a in named if a.customer_name.strip() and is_placeholder_name(a.customer_name)]
    return _cancel(db, placeholders, now)


def cancel_far_future_sentinels(db: Session, now: datetime) -> List[Tuple[int, Optional[str]]]:
    limit = now + timedelta(days=config.FAR_FUTURE_DAYS)
    artifacts = (
        _active(db)
        .filter(
            DBAppointment.customer_phone == SENTINEL_CUSTOMER,
            DBAppointment.start_time > limit,
        )
        .all()
    )
    return _cancel(db, artifacts, now)


STEPS = [
    ("complete_past", complete_past_appointments, "completed"),
    ("purge_conversations", purge_old_conversations, "conversations_purged"),
    ("cancel_placeholders", cancel_placeholder_appointments, "placeholders_cancelled"),
    ("cancel_far_future", cancel_far_future_sentinels, "far_future_cancelled"),
]


def run_cleanup(db: Session, now: Optional[datetime] = None) -> CleanupReport:
    """
    Run every sweep step against ``db``.

    Calendar events of cancelled appointments are only collected in
    ``report.calendar_removals``; ``sweep`` also deletes them.
    """
    now = now or now_local()
    report = CleanupReport()

    for step, func, attr in STEPS:
        try:
            result = func(db, now)
            if isinstance(result, list):
                report.calendar_removals.extend((b, e) for b, e in result if e)
                result = len(result)
            setattr(report, attr, result)
            cleanup_runs.labels(step=step, outcome="success").inc()
        except Exception as e:
            db.rollback()
            report.failed_steps[step] = str(e)
            cleanup_runs.labels(step=step, outcome="failure").inc()
            logger.error("cleanup_step_failed", step=step, error=str(e))

    logger.info(
        "cleanup_completed",
        completed=report.completed,
        conversations_purged=report.conversations_purged,
        placeholders_cancelled=report.placeholders_cancelled,
        far_future_cancelled=report.far_future_cancelled,
        failed_steps=list(report.failed_steps),
    )
    return report


async def remove_calendar_events(db: Session, removals: List[CalendarRemoval], calendar_factory: Optional[Callable] = None) -> int:
    """
    Delete the calendar events of appointments the sweep cancelled.

    Best effort, like a customer cancellation: failures are logged and the
    appointment stays cancelled. Returns the number of events deleted.
    """
    calendar_factory = calendar_factory or calendar_for_business
    calendars: Dict[int, object] = {}
    deleted = 0
    failed = 0

    for business_id, event_id in removals:
        try:
            if business_id not in calendars:
                business = db.get(DBBusiness, business_id)
                calendars[business_id] = calendar_factory(db, business) if business else None
            calendar = calendars[business_id]
            if calendar is None:
                continue
            await calendar.delete_event(event_id)
            deleted += 1
        except Exception as e:
            failed += 1
            logger.warning("calendar_delete_failed", business_id=business_id, event_id=event_id, error=str(e))

    if removals:
        cleanup_runs.labels(step="delete_calendar_events", outcome="failure" if failed else "success").inc()
    return deleted


async def sweep(db: Session, now: Optional[datetime] = None, calendar_factory: Optional[Callable] = None) -> CleanupReport:
    """Run the sweep and delete the calendar events of everything it cancelled."""
    report = run_cleanup(db, now)
    report.calendar_events_deleted = await remove_calendar_events(db, report.calendar_removals, calendar_factory)
    return report
