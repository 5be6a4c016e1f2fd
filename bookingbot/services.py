"""
Service layer for database operations and the appointment lifecycle.
"""

from datetime import datetime
from typing import List, Optional
import json

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookingbot.clock import now_local
from bookingbot.context import BookingContext
from bookingbot.database import storage_errors
from bookingbot.db_models import (
    ACTIVE_STATUSES,
    MAX_APPOINTMENT_MINUTES,
    AppointmentStatus,
    ConversationRole,
    DBAppointment,
    DBBusiness,
    DBConversationTurn,
)
from bookingbot.errors import CollaboratorUnavailable, InvalidTransition, NotFound, SlotUnavailable
from bookingbot.language.messages_he import get_text
from bookingbot.logging_config import get_logger
from bookingbot.messaging import notify_owner
from bookingbot.metrics import appointments_total
from bookingbot.scheduling import has_conflict

logger = get_logger(__name__)

# Allowed status moves; cancelled and completed are terminal.
TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED},
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.COMPLETED: set(),
}


def transition(appointment: DBAppointment, status: AppointmentStatus, at: Optional[datetime] = None) -> None:
    """Apply a status change, enforcing the lifecycle state machine."""
    if status not in TRANSITIONS[appointment.status]:
        raise InvalidTransition(
            f"appointment {appointment.id}: {appointment.status.value} -> {status.value} is not allowed"
        )
    appointment.status = status
    if status == AppointmentStatus.CANCELLED:
        appointment.cancelled_at = at or now_local()
    elif status == AppointmentStatus.CONFIRMED and appointment.confirmed_at is None:
        appointment.confirmed_at = at or now_local()


class BusinessService:
    """Service for looking up and updating businesses."""

    @staticmethod
    def create_business(
        db: Session,
        name: str,
        whatsapp_number: str,
        owner_phone: Optional[str] = None,
        work_start: str = "09:00",
        work_end: str = "18:00",
        working_days: str = "6,0,1,2,3",
        appointment_duration: int = 30,
    ) -> DBBusiness:
        """Provision a business."""
        business = DBBusiness(
            name=name,
            whatsapp_number=whatsapp_number,
            owner_phone=owner_phone,
            work_start=work_start,
            work_end=work_end,
            working_days=working_days,
            appointment_duration=appointment_duration,
        )
        db.add(business)
        db.commit()
        db.refresh(business)

        logger.info("business_created", business_id=business.id, whatsapp_number=whatsapp_number)
        return business

    @staticmethod
    def get_business(db: Session, business_id: int) -> Optional[DBBusiness]:
        return db.query(DBBusiness).filter(DBBusiness.id == business_id).first()

    @staticmethod
    def get_by_whatsapp_number(db: Session, whatsapp_number: str) -> Optional[DBBusiness]:
        """Route an inbound message to the business that owns the number."""
        return db.query(DBBusiness).filter(DBBusiness.whatsapp_number == whatsapp_number).first()

    @staticmethod
    def list_calendar_connected(db: Session) -> List[DBBusiness]:
        return db.query(DBBusiness).filter(DBBusiness.calendar_connected == True).all()  # noqa: E712

    @staticmethod
    def connect_calendar(db: Session, business_id: int, tokens: dict, calendar_id: str = "primary") -> Optional[DBBusiness]:
        """Store OAuth tokens and mark the calendar as connected."""
        business = BusinessService.get_business(db, business_id)
        if business:
            business.google_calendar_token = json.dumps(tokens)
            business.calendar_connected = True
            business.calendar_id = calendar_id or "primary"
            db.commit()
            db.refresh(business)

            logger.info("calendar_connected", business_id=business_id)

        return business

    @staticmethod
    def mark_synced(db: Session, business: DBBusiness, at: Optional[datetime] = None) -> None:
        business.last_sync_time = at or now_local()
        db.commit()


class AppointmentService:
    """
    Appointment lifecycle: create, cancel, reschedule, complete.

    The database write is the decision. Calendar mirroring and owner
    notification run afterwards and never undo it.
    """

    @staticmethod
    def get(db: Session, business_id: int, appointment_id: str) -> Optional[DBAppointment]:
        return db.query(DBAppointment).filter(
            DBAppointment.id == appointment_id,
            DBAppointment.business_id == business_id,
        ).first()

    @staticmethod
    def get_active(db: Session, business_id: int, appointment_id: str) -> Optional[DBAppointment]:
        return db.query(DBAppointment).filter(
            DBAppointment.id == appointment_id,
            DBAppointment.business_id == business_id,
            DBAppointment.status.in_(ACTIVE_STATUSES),
        ).first()

    @staticmethod
    def get_active_for_customer(
        db: Session, business_id: int, customer_phone: str, now: Optional[datetime] = None
    ) -> List[DBAppointment]:
        """Upcoming active appointments of one customer, earliest first."""
        now = now or now_local()
        with storage_errors(db, "get_active_for_customer"):
            return (
                db.query(DBAppointment)
                .filter(
                    DBAppointment.business_id == business_id,
                    DBAppointment.customer_phone == customer_phone,
                    DBAppointment.status.in_(ACTIVE_STATUSES),
                    DBAppointment.start_time >= now,
                )
                .order_by(DBAppointment.start_time)
                .all()
            )

    @staticmethod
    def list_appointments(
        db: Session,
        business_id: Optional[int] = None,
        status: Optional[AppointmentStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[DBAppointment]:
        """List appointments with optional filtering."""
        query = db.query(DBAppointment)

        if business_id:
            query = query.filter(DBAppointment.business_id == business_id)

        if status:
            query = query.filter(DBAppointment.status == status)

        return query.order_by(DBAppointment.start_time).offset(skip).limit(limit).all()

    @staticmethod
    def _commit_slot(db: Session, appointment: DBAppointment) -> None:
        """Commit a slot write; losing a concurrent race on the same slot is a conflict."""
        start, business_id = appointment.start_time, appointment.business_id
        with storage_errors(db, "commit_slot"):
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.warning("slot_write_race_lost", business_id=business_id, start_time=start.isoformat(), error=str(e.orig))
                raise SlotUnavailable(start, "slot was taken by a concurrent booking") from e
            db.refresh(appointment)

    @staticmethod
    async def create(
        ctx: BookingContext,
        customer_phone: str,
        start: datetime,
        customer_name: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> DBAppointment:
        """
        Book a confirmed appointment.

        Raises:
            SlotUnavailable: the interval overlaps an active appointment (no writes)
        """
        business = ctx.business
        duration = duration or business.appointment_duration or 30
        if duration <= 0 or duration > MAX_APPOINTMENT_MINUTES:
            raise ValueError(f"appointment duration out of range: {duration}")

        # Always re-check here; availability shown earlier in the chat may be stale.
        if has_conflict(ctx.db, business.id, start, duration):
            appointments_total.labels(operation="create", outcome="conflict").inc()
            raise SlotUnavailable(start)

        now = now_local()
        appointment = DBAppointment(
            business_id=business.id,
            customer_phone=customer_phone,
            customer_name=customer_name,
            start_time=start,
            duration=duration,
            status=AppointmentStatus.CONFIRMED,
            confirmed_at=now,
            created_at=now,
        )
        ctx.db.add(appointment)
        try:
            AppointmentService._commit_slot(ctx.db, appointment)
        except SlotUnavailable:
            appointments_total.labels(operation="create", outcome="conflict").inc()
            raise

        appointments_total.labels(operation="create", outcome="success").inc()
        logger.info(
            "appointment_created",
            appointment_id=appointment.id,
            business_id=business.id,
            start_time=start.isoformat(),
        )

        await AppointmentService._mirror_to_calendar(ctx, appointment)
        await notify_owner(ctx.messenger, business, appointment, "new")
        return appointment

    @staticmethod
    async def cancel(
        ctx: BookingContext,
        appointment_id: str,
        customer_phone: Optional[str] = None,
    ) -> DBAppointment:
        """
        Cancel an active appointment of this business.

        When ``customer_phone`` is given, only that customer's appointment matches.

        Raises:
            NotFound: no matching active appointment
        """
        business = ctx.business
        with storage_errors(ctx.db, "cancel"):
            appointment = AppointmentService.get_active(ctx.db, business.id, appointment_id)
        if not appointment or (customer_phone and appointment.customer_phone != customer_phone):
            appointments_total.labels(operation="cancel", outcome="not_found").inc()
            raise NotFound(appointment_id)

        event_id = appointment.google_event_id
        if event_id and ctx.calendar:
            try:
                await ctx.calendar.delete_event(event_id)
            except Exception as e:
                logger.warning("calendar_delete_failed", appointment_id=appointment_id, event_id=event_id, error=str(e))

        transition(appointment, AppointmentStatus.CANCELLED)
        with storage_errors(ctx.db, "cancel"):
            ctx.db.commit()
            ctx.db.refresh(appointment)

        appointments_total.labels(operation="cancel", outcome="success").inc()
        logger.info("appointment_cancelled", appointment_id=appointment_id, business_id=business.id)

        await notify_owner(ctx.messenger, business, appointment, "cancelled")
        return appointment

    @staticmethod
    async def reschedule(
        ctx: BookingContext,
        appointment_id: str,
        new_start: datetime,
        customer_phone: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> DBAppointment:
        """
        Move an active appointment to ``new_start`` (same record).

        Raises:
            NotFound: no matching active appointment
            SlotUnavailable: the new interval overlaps another appointment (no writes)
        """
        business = ctx.business
        with storage_errors(ctx.db, "reschedule"):
            appointment = AppointmentService.get_active(ctx.db, business.id, appointment_id)
        if not appointment or (customer_phone and appointment.customer_phone != customer_phone):
            appointments_total.labels(operation="reschedule", outcome="not_found").inc()
            raise NotFound(appointment_id)

        if has_conflict(ctx.db, business.id, new_start, appointment.duration, exclude_appointment_id=appointment.id):
            appointments_total.labels(operation="reschedule", outcome="conflict").inc()
            raise SlotUnavailable(new_start)

        old_start = appointment.start_time
        transition(appointment, appointment.status)
        appointment.start_time = new_start
        if customer_name:
            appointment.customer_name = customer_name
        try:
            AppointmentService._commit_slot(ctx.db, appointment)
        except SlotUnavailable:
            appointments_total.labels(operation="reschedule", outcome="conflict").inc()
            raise

        appointments_total.labels(operation="reschedule", outcome="success").inc()
        logger.info(
            "appointment_rescheduled",
            appointment_id=appointment_id,
            business_id=business.id,
            old_start=old_start.isoformat(),
            new_start=new_start.isoformat(),
        )

        if appointment.google_event_id and ctx.calendar:
            try:
                await ctx.calendar.patch_event(appointment.google_event_id, appointment.start_time, appointment.end_time)
            except Exception as e:
                logger.warning(
                    "calendar_patch_failed",
                    appointment_id=appointment_id,
                    event_id=appointment.google_event_id,
                    error=str(e),
                )

        await notify_owner(ctx.messenger, business, appointment, "rescheduled")
        return appointment

    @staticmethod
    def complete(db: Session, appointment: DBAppointment) -> DBAppointment:
        """Time-driven transition for appointments whose start has passed."""
        transition(appointment, AppointmentStatus.COMPLETED)
        db.commit()
        logger.info("appointment_completed", appointment_id=appointment.id, business_id=appointment.business_id)
        return appointment

    @staticmethod
    async def _mirror_to_calendar(ctx: BookingContext, appointment: DBAppointment) -> None:
        """Best-effort calendar insert; on failure the appointment stays unlinked."""
        if not ctx.calendar:
            return

        customer = appointment.customer_name or appointment.customer_phone
        try:
            event_id = await ctx.calendar.insert_event(
                summary=get_text("calendar_event_summary", customer=customer),
                description=get_text("calendar_event_description", customer=customer, phone=appointment.customer_phone),
                start=appointment.start_time,
                end=appointment.end_time,
            )
        except Exception as e:
            logger.warning("calendar_insert_failed", appointment_id=appointment.id, error=str(e))
            return

        appointment_id = appointment.id
        appointment.google_event_id = event_id
        try:
            with storage_errors(ctx.db, "link_calendar_event"):
                ctx.db.commit()
        except CollaboratorUnavailable:
            # The booking row is already committed; only the event link is lost.
            logger.warning("calendar_link_not_saved", appointment_id=appointment_id, event_id=event_id)
            return
        logger.info("appointment_linked_to_calendar", appointment_id=appointment_id, event_id=event_id)


class ConversationService:
    """Service for the per-customer short-term conversation memory."""

    @staticmethod
    def add_turn(db: Session, business_id: int, customer_phone: str, role: ConversationRole, content: str) -> DBConversationTurn:
        turn = DBConversationTurn(
            business_id=business_id,
            customer_phone=customer_phone,
            role=role,
            content=content,
            created_at=now_local(),
        )
        with storage_errors(db, "add_turn"):
            db.add(turn)
            db.commit()
        return turn

    @staticmethod
    def get_history(db: Session, business_id: int, customer_phone: str, limit: int = 10) -> List[DBConversationTurn]:
        """The most recent ``limit`` turns, oldest first."""
        with storage_errors(db, "get_history"):
            recent = (
                db.query(DBConversationTurn)
                .filter(
                    DBConversationTurn.business_id == business_id,
                    DBConversationTurn.customer_phone == customer_phone,
                )
                .order_by(DBConversationTurn.created_at.desc(), DBConversationTurn.id.desc())
                .limit(limit)
                .all()
            )
        return list(reversed(recent))

    @staticmethod
    def purge_customer(db: Session, business_id: int, customer_phone: str) -> int:
        with storage_errors(db, "purge_customer"):
            deleted = (
                db.query(DBConversationTurn)
                .filter(
                    DBConversationTurn.business_id == business_id,
                    DBConversationTurn.customer_phone == customer_phone,
                )
                .delete(synchronize_session=False)
            )
            db.commit()
        logger.info("conversation_reset", business_id=business_id, customer_phone=customer_phone, deleted=deleted)
        return deleted

    @staticmethod
    def purge_older_than(db: Session, cutoff: datetime) -> int:
        deleted = (
            db.query(DBConversationTurn)
            .filter(DBConversationTurn.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted
