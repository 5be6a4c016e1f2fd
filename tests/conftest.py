import os

# Must be set before bookingbot.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RUN_BACKGROUND_JOBS", "False")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bookingbot import database
from bookingbot.calendar_client import CalendarEvent
from bookingbot.context import BookingContext
from bookingbot.errors import CollaboratorUnavailable

# Monday, comfortably in the future so nothing is filtered as "past"
NOW = datetime(2030, 3, 4, 8, 0)


@pytest.fixture(autouse=True)
def _safe_test_config(monkeypatch):
    """Force deterministic, offline-safe config for tests.

    The repo loads .env on import; these overrides prevent real network calls
    (OpenAI/Twilio/Google) and keep background loops out of the test process.
    """
    from bookingbot.config import config, Config

    overrides = {
        "OPENAI_API_KEY": "test",
        "TWILIO_ACCOUNT_SID": "",
        "TWILIO_AUTH_TOKEN": "",
        "GOOGLE_CLIENT_ID": "client-id",
        "GOOGLE_CLIENT_SECRET": "client-secret",
        "GOOGLE_REDIRECT_URI": "http://testserver/oauth2callback",
        "API_KEY": "",
        "VALIDATE_TWILIO_SIGNATURE": False,
        "BASE_URL": "",
        "RUN_BACKGROUND_JOBS": False,
        "BUSINESS_TIMEZONE": "Asia/Jerusalem",
    }
    # Keep the class and the instance in sync for code that reads either.
    for key, value in overrides.items():
        monkeypatch.setattr(Config, key, value, raising=False)
        monkeypatch.setattr(config, key, value, raising=False)

    return config


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    from bookingbot import db_models  # noqa: F401 - register tables

    database.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    """Session factory bound to the in-memory database, also installed as SessionLocal."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(database, "SessionLocal", factory)
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def business(db):
    from bookingbot.services import BusinessService

    return BusinessService.create_business(
        db,
        name="מספרת דנה",
        whatsapp_number="+14155238886",
        owner_phone="+972501111111",
        work_start="09:00",
        work_end="18:00",
        working_days="0,1,2,3,4,5,6",
        appointment_duration=30,
    )


class FakeMessenger:
    """Records outgoing messages instead of calling Twilio."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, to, body):
        if self.fail:
            raise CollaboratorUnavailable("messaging", "twilio down")
        self.sent.append((to, body))
        return f"SM{len(self.sent)}"


class FakeCalendar:
    """In-memory stand-in for GoogleCalendarClient."""

    def __init__(self, events=None, fail: bool = False):
        self.events = {e.id: e for e in (events or [])}
        self.fail = fail
        self.inserted = []
        self.patched = []
        self.deleted = []

    def _check(self):
        if self.fail:
            raise CollaboratorUnavailable("calendar", "google down")

    async def list_events(self, time_min, time_max):
        self._check()
        return [e for e in self.events.values() if time_min <= e.start < time_max]

    async def insert_event(self, summary, description, start, end):
        self._check()
        event_id = f"evt-{len(self.inserted) + 1}"
        self.inserted.append({"id": event_id, "summary": summary, "description": description, "start": start, "end": end})
        self.events[event_id] = CalendarEvent(id=event_id, summary=summary, start=start, end=end)
        return event_id

    async def patch_event(self, event_id, start, end):
        self._check()
        self.patched.append((event_id, start, end))
        event = self.events[event_id]
        self.events[event_id] = CalendarEvent(id=event_id, summary=event.summary, start=start, end=end)

    async def delete_event(self, event_id):
        self._check()
        self.deleted.append(event_id)
        self.events.pop(event_id, None)


def make_event(event_id, start, minutes=30, summary="פגישה"):
    return CalendarEvent(id=event_id, summary=summary, start=start, end=start + timedelta(minutes=minutes))


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def ctx(db, business, messenger):
    """Booking context without a calendar."""
    return BookingContext(db=db, business=business, calendar=None, messenger=messenger)


@pytest.fixture
def calendar_ctx(db, business, messenger, calendar):
    return BookingContext(db=db, business=business, calendar=calendar, messenger=messenger)
