from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from bookingbot.cleanup import sweep
from bookingbot.context import BookingContext
from bookingbot.database import get_db
from bookingbot.db_models import AppointmentStatus
from bookingbot.errors import NotFound
from bookingbot.models import AppointmentOut, CancelPastResponse
from bookingbot.security import verify_api_key
from bookingbot.services import AppointmentService, BusinessService

router = APIRouter(prefix="/debug", tags=["Admin"], dependencies=[Depends(verify_api_key)])


# GET /debug/appointments
# Gets: optional business_id, status, skip, limit query parameters
# Returns: JSON array of AppointmentOut
# Example:
#   curl -H 'X-API-Key: ...' 'http://localhost:8000/debug/appointments?business_id=1&status=confirmed'
@router.get("/appointments", response_model=list[AppointmentOut])
async def list_appointments(
    business_id: Optional[int] = None,
    status: Optional[AppointmentStatus] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    """List appointments, earliest first."""
    return AppointmentService.list_appointments(db, business_id=business_id, status=status, skip=skip, limit=limit)


# POST /debug/cancel-past
# Gets: nothing
# Returns: CancelPastResponse with per-step counts
# Example:
#   curl -X POST -H 'X-API-Key: ...' http://localhost:8000/debug/cancel-past
@router.post("/cancel-past", response_model=CancelPastResponse)
async def cancel_past(db: Session = Depends(get_db)):
    """Run the retention sweep now instead of waiting for the daily job."""
    report = await sweep(db)
    return CancelPastResponse(
        completed=report.completed,
        conversations_purged=report.conversations_purged,
        placeholders_cancelled=report.placeholders_cancelled,
        far_future_cancelled=report.far_future_cancelled,
        calendar_events_deleted=report.calendar_events_deleted,
        failed_steps=report.failed_steps,
    )


# POST /debug/appointments/{appointment_id}/cancel?business_id=1
# Gets: appointment id in the path, business_id query parameter
# Returns: the cancelled AppointmentOut
# Example:
#   curl -X POST -H 'X-API-Key: ...' 'http://localhost:8000/debug/appointments/<id>/cancel?business_id=1'
@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_appointment(appointment_id: str, business_id: int, db: Session = Depends(get_db)):
    """Cancel an appointment on the owner's behalf (calendar event removed, owner notified)."""
    business = BusinessService.get_business(db, business_id)
    if not business:
        raise HTTPException(status_code=404, detail=f"Business {business_id} not found")

    ctx = BookingContext.for_business(db, business)
    try:
        return await AppointmentService.cancel(ctx, appointment_id)
    except NotFound:
        raise HTTPException(status_code=404, detail=f"Active appointment {appointment_id} not found")
