"""
Structured logging with structlog.

JSON lines in production, colored console output when DEBUG is on. Customer
phone numbers are masked before rendering, and the business/customer of the
conversation being handled is bound through contextvars so every event of a
turn carries it.
"""

import logging
import sys
from typing import Any, Optional

import structlog

from bookingbot.config import config

QUIET_LOGGERS = ("httpx", "httpcore", "openai", "twilio", "urllib3", "sqlalchemy.engine")

# Event keys holding a customer phone number
PHONE_KEYS = frozenset({"customer_phone", "from_number", "to", "phone"})


def mask_phone(value: str) -> str:
    """``+972501234567`` -> ``+97250****567``; short values are left alone."""
    if not isinstance(value, str) or len(value) < 8:
        return value
    return value[:6] + "*" * (len(value) - 9) + value[-3:]


def mask_phone_numbers(logger, method_name, event_dict):
    for key in PHONE_KEYS.intersection(event_dict):
        event_dict[key] = mask_phone(event_dict[key])
    return event_dict


def _log_level() -> int:
    level = logging.getLevelName(str(config.LOG_LEVEL).upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging():
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=_log_level())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        mask_phone_numbers,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if config.DEBUG else structlog.processors.JSONRenderer(ensure_ascii=False),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_conversation(business_id: Optional[int] = None, customer_phone: Optional[str] = None) -> None:
    """Attach the conversation being handled to every log event until cleared."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(business_id=business_id, customer_phone=customer_phone)


def clear_conversation() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = None) -> Any:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("appointment_created", appointment_id="...", business_id=1)
    """
    return structlog.get_logger(name)


configure_logging()

logger = get_logger("bookingbot")
