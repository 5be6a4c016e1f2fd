"""
Two-way reconciliation between local appointments and each business's Google Calendar.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookingbot.clock import now_local
from bookingbot.config import config
from bookingbot.context import calendar_for_business
from bookingbot.db_models import ACTIVE_STATUSES, SENTINEL_CUSTOMER, AppointmentStatus, DBAppointment, DBBusiness
from bookingbot.language.messages_he import get_text
from bookingbot.logging_config import get_logger
from bookingbot.metrics import calendar_sync_runs
from bookingbot.scheduling import has_conflict
from bookingbot.services import BusinessService, transition

logger = get_logger(__name__)


@dataclass
class SyncReport:
    business_id: int
    added: int = 0
    cancelled: int = 0
    moved: int = 0
    skipped: int = 0


def _known_event_ids(db: Session, business_id: int) -> set:
    rows = (
        db.query(DBAppointment.google_event_id)
        .filter(
            DBAppointment.business_id == business_id,
            DBAppointment.google_event_id.isnot(None),
        )
        .all()
    )
    return {row[0] for row in rows}


def _commit_or_skip(db: Session, event_id: str, action: str) -> bool:
    """Commit one repair; a unique-index collision rolls back and skips the event."""
    try:
        db.commit()
        return True
    except IntegrityError as e:
        db.rollback()
        logger.warning("calendar_sync_write_skipped", event_id=event_id, action=action, error=str(e.orig))
        return False


async def reconcile_business(db: Session, business: DBBusiness, calendar, now: Optional[datetime] = None) -> SyncReport:
    """
    Align one business's local appointments with its external calendar.

    Unseen events become sentinel-customer appointments, externally deleted
    events cancel their local mirror, and externally moved events update the
    local start only when the appointment was created from the calendar.
    """
    now = now or now_local()
    window_end = now + timedelta(days=config.CALENDAR_SYNC_DAYS)
    report = SyncReport(business_id=business.id)

    events = await calendar.list_events(now, window_end)
    external = {event.id: event for event in events}
    known = _known_event_ids(db, business.id)

    for event in events:
        if event.id in known:
            continue

        duration = event.duration_minutes or business.appointment_duration or 30
        if has_conflict(db, business.id, event.start, duration):
            logger.warning("calendar_event_overlaps_booking", business_id=business.id, event_id=event.id)
            report.skipped += 1
            continue

        db.add(DBAppointment(
            business_id=business.id,
            customer_phone=SENTINEL_CUSTOMER,
            customer_name=event.summary or get_text("calendar_manual_name"),
            start_time=event.start,
            duration=duration,
            status=AppointmentStatus.CONFIRMED,
            confirmed_at=now,
            google_event_id=event.id,
            notes=get_text("calendar_manual_note"),
            created_at=now,
        ))
        if _commit_or_skip(db, event.id, "insert"):
            report.added += 1
            logger.info("calendar_event_imported", business_id=business.id, event_id=event.id, start_time=event.start.isoformat())
        else:
            report.skipped += 1

    mirrored: List[DBAppointment] = (
        db.query(DBAppointment)
        .filter(
            DBAppointment.business_id == business.id,
            DBAppointment.google_event_id.isnot(None),
            DBAppointment.status.in_(ACTIVE_STATUSES),
            DBAppointment.start_time >= now,
            DBAppointment.start_time < window_end,
        )
        .all()
    )

    for appointment in mirrored:
        event = external.get(appointment.google_event_id)

        if event is None:
            transition(appointment, AppointmentStatus.CANCELLED, at=now)
            db.commit()
            report.cancelled += 1
            logger.info(
                "calendar_event_deleted_externally",
                business_id=business.id,
                appointment_id=appointment.id,
                event_id=appointment.google_event_id,
            )
            continue

        if event.start == appointment.start_time:
            continue

        if not appointment.is_sentinel:
            logger.info(
                "calendar_drift_ignored",
                business_id=business.id,
                appointment_id=appointment.id,
                local_start=appointment.start_time.isoformat(),
                external_start=event.start.isoformat(),
            )
            continue

        if has_conflict(db, business.id, event.start, appointment.duration, exclude_appointment_id=appointment.id):
            logger.warning("calendar_move_overlaps_booking", business_id=business.id, appointment_id=appointment.id)
            report.skipped += 1
            continue

        event_id = appointment.google_event_id
        appointment.start_time = event.start
        if _commit_or_skip(db, event_id, "move"):
            report.moved += 1
            logger.info("calendar_event_moved", business_id=business.id, appointment_id=appointment.id, start_time=event.start.isoformat())
        else:
            report.skipped += 1

    BusinessService.mark_synced(db, business, at=now_local())
    logger.info(
        "calendar_synced",
        business_id=business.id,
        added=report.added,
        cancelled=report.cancelled,
        moved=report.moved,
        skipped=report.skipped,
    )
    return report


async def run_calendar_sync(session_factory: Callable[[], Session], calendar_factory=None) -> List[SyncReport]:
    """
    Reconcile every calendar-connected business.

    Each business runs in its own session; a failure is logged and the next
    business continues.
    """
    calendar_factory = calendar_factory or calendar_for_business
    reports: List[SyncReport] = []

    db = session_factory()
    try:
        business_ids = [b.id for b in BusinessService.list_calendar_connected(db)]
    finally:
        db.close()

    if business_ids:
        logger.info("calendar_sync_started", businesses=len(business_ids))

    for business_id in business_ids:
        db = session_factory()
        try:
            business = BusinessService.get_business(db, business_id)
            calendar = calendar_factory(db, business) if business else None
            if calendar is None:
                continue
            reports.append(await reconcile_business(db, business, calendar))
            calendar_sync_runs.labels(outcome="success").inc()
        except Exception as e:
            db.rollback()
            calendar_sync_runs.labels(outcome="failure").inc()
            logger.error("calendar_sync_failed", business_id=business_id, error=str(e))
        finally:
            db.close()

    return reports
