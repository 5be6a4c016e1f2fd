"""
SQLAlchemy database models.
Businesses own appointments and conversation turns; nothing is shared across businesses.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import timedelta
import enum
import uuid

from bookingbot.clock import now_local
from bookingbot.database import Base

# Customer identity for calendar-originated appointments with no known customer.
SENTINEL_CUSTOMER = "unknown"

# Upper bound on a single appointment; lets conflict queries use a bounded window.
MAX_APPOINTMENT_MINUTES = 24 * 60


class AppointmentStatus(str, enum.Enum):
    """Appointment lifecycle status."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


class ConversationRole(str, enum.Enum):
    """Conversation turn author."""
    USER = "user"
    ASSISTANT = "assistant"


def _new_id() -> str:
    return str(uuid.uuid4())


class DBBusiness(Base):
    """Business database model."""
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    whatsapp_number = Column(String(50), unique=True, nullable=False, index=True)
    owner_phone = Column(String(50))

    # Working hours window, "HH:MM"
    work_start = Column(String(5), default="09:00", nullable=False)
    work_end = Column(String(5), default="18:00", nullable=False)
    # Comma separated Python weekday numbers (Monday=0). Default: Sunday-Thursday.
    working_days = Column(String(20), default="6,0,1,2,3", nullable=False)
    appointment_duration = Column(Integer, default=30, nullable=False)

    # Google Calendar connection
    calendar_connected = Column(Boolean, default=False, nullable=False)
    google_calendar_token = Column(Text)  # JSON credential blob
    calendar_id = Column(String(255), default="primary")
    last_sync_time = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=now_local)

    appointments = relationship("DBAppointment", back_populates="business")
    conversation_turns = relationship("DBConversationTurn", back_populates="business")

    def working_weekdays(self) -> set[int]:
        days = set()
        for part in (self.working_days or "").split(","):
            part = part.strip()
            if part.isdigit():
                days.add(int(part))
        return days


class DBAppointment(Base):
    """Appointment database model. Rows are status-transitioned, never deleted."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=_new_id)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    customer_phone = Column(String(50), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)

    start_time = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False, default=30)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING)

    google_event_id = Column(String(255), nullable=True, index=True)
    notes = Column(Text)

    created_at = Column(DateTime, default=now_local)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local)

    business = relationship("DBBusiness", back_populates="appointments")

    __table_args__ = (
        # Two active appointments of one business can never share a start time,
        # even when two writers pass the overlap check at the same moment.
        Index(
            "uq_active_appointment_start",
            "business_id",
            "start_time",
            unique=True,
            sqlite_where=status.in_(ACTIVE_STATUSES),
            postgresql_where=status.in_(ACTIVE_STATUSES),
        ),
    )

    @property
    def end_time(self):
        return self.start_time + timedelta(minutes=self.duration)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_sentinel(self) -> bool:
        return self.customer_phone == SENTINEL_CUSTOMER


class DBConversationTurn(Base):
    """Short-term conversation memory for one customer of one business."""
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    customer_phone = Column(String(50), nullable=False, index=True)
    role = Column(SQLEnum(ConversationRole), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=now_local, index=True)

    business = relationship("DBBusiness", back_populates="conversation_turns")
