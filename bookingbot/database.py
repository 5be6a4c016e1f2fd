"""
Database engine and session management.

PostgreSQL in production, SQLite (file or in-memory) for development and tests.
All datetimes are stored naive, in the business timezone (see bookingbot.clock).
"""

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from bookingbot.config import config
from bookingbot.errors import CollaboratorUnavailable
from bookingbot.logging_config import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        # One shared connection, otherwise every session sees its own empty in-memory DB
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options

    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "echo": config.DEBUG,
    }


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding one session per request.

    Usage:
        @router.get("/debug/appointments")
        async def list_appointments(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for background jobs and scripts; rolled back if the block raises."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def storage_errors(db: Session, operation: str) -> Iterator[None]:
    """
    Report store failures inside the block as CollaboratorUnavailable("storage").

    The session is rolled back so it stays usable for the rest of the turn.
    Integrity errors handled inside the block never reach here.
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("storage_operation_failed", operation=operation, error=str(e))
        try:
            db.rollback()
        except SQLAlchemyError as rollback_error:
            logger.warning("storage_rollback_failed", operation=operation, error=str(rollback_error))
        raise CollaboratorUnavailable("storage", str(e)) from e


def ping() -> None:
    """Round-trip to the database. Raises if it is unreachable."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    finally:
        db.close()


def init_db():
    """Create the businesses, appointments and conversations tables if missing."""
    from bookingbot import db_models  # noqa: F401 - register tables

    Base.metadata.create_all(bind=engine)
