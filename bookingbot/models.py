"""API data models for the booking bot."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from bookingbot.db_models import AppointmentStatus


class AppointmentOut(BaseModel):
    """Appointment as returned by the admin endpoints."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_id: int
    customer_phone: str
    customer_name: Optional[str] = None
    start_time: datetime
    duration: int
    status: AppointmentStatus
    google_event_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class AgentTurnRequest(BaseModel):
    """Request model for /agent/turn endpoint."""
    business_id: int
    customer_phone: str
    message: str


class AgentTurnResponse(BaseModel):
    """Response model for /agent/turn endpoint."""
    reply: str


class CancelPastResponse(BaseModel):
    completed: int
    conversations_purged: int
    placeholders_cancelled: int
    far_future_cancelled: int
    calendar_events_deleted: int = 0
    failed_steps: dict = {}
