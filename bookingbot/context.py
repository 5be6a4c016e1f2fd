"""
Per-operation booking context.

Every lifecycle operation receives the session, the business, and collaborators
built for that business. Nothing credential-bearing lives at module level.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from bookingbot.calendar_client import GoogleCalendarClient, load_credentials
from bookingbot.db_models import DBBusiness
from bookingbot.logging_config import get_logger
from bookingbot.messaging import WhatsAppMessenger

logger = get_logger(__name__)


def calendar_for_business(db: Session, business: DBBusiness) -> Optional[GoogleCalendarClient]:
    """Build a calendar client for a connected business, or None."""
    if not business.calendar_connected:
        return None

    credentials = load_credentials(business.google_calendar_token)
    if not credentials.get("access_token") and not credentials.get("refresh_token"):
        return None

    def _persist_tokens(tokens: Dict[str, Any]) -> None:
        business.google_calendar_token = json.dumps(tokens)
        db.commit()
        logger.info("calendar_tokens_persisted", business_id=business.id)

    return GoogleCalendarClient(
        credentials,
        calendar_id=business.calendar_id or "primary",
        on_token_refresh=_persist_tokens,
    )


@dataclass
class BookingContext:
    """Everything one booking operation needs, scoped to one business."""
    db: Session
    business: DBBusiness
    calendar: Optional[Any] = None
    messenger: Optional[Any] = None

    @classmethod
    def for_business(cls, db: Session, business: DBBusiness, messenger=None) -> "BookingContext":
        return cls(
            db=db,
            business=business,
            calendar=calendar_for_business(db, business),
            messenger=messenger or WhatsAppMessenger(),
        )
