"""
WhatsApp messaging through Twilio, plus owner notifications.
"""

import asyncio
from typing import Optional

from bookingbot.config import config
from bookingbot.errors import CollaboratorUnavailable
from bookingbot.language.messages_he import date_parts, get_text
from bookingbot.logging_config import get_logger

logger = get_logger(__name__)

WHATSAPP_PREFIX = "whatsapp:"


def normalize_phone(address: str) -> str:
    """Strip the ``whatsapp:`` channel prefix Twilio puts on addresses."""
    value = (address or "").strip()
    if value.startswith(WHATSAPP_PREFIX):
        value = value[len(WHATSAPP_PREFIX):]
    return value


def whatsapp_address(phone: str) -> str:
    return phone if phone.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{phone}"


class WhatsAppMessenger:
    """Sends WhatsApp text messages. A Twilio client is created per send."""

    def __init__(self, from_number: Optional[str] = None):
        self.from_number = from_number or config.TWILIO_WHATSAPP_NUMBER

    def _send_sync(self, to: str, body: str) -> str:
        from twilio.rest import Client

        client = Client(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN)
        message = client.messages.create(
            from_=whatsapp_address(self.from_number),
            to=whatsapp_address(to),
            body=body,
        )
        return message.sid

    async def send(self, to: str, body: str) -> str:
        """
        Send ``body`` to ``to``.

        Returns:
            Twilio message SID

        Raises:
            CollaboratorUnavailable: Twilio is not configured or rejected the message
        """
        if not config.has_twilio_config():
            raise CollaboratorUnavailable("messaging", "Twilio is not configured")

        try:
            sid = await asyncio.to_thread(self._send_sync, to, body)
        except Exception as e:
            logger.error("whatsapp_send_failed", to=to, error=str(e))
            raise CollaboratorUnavailable("messaging", str(e)) from e

        logger.info("whatsapp_message_sent", to=to, message_sid=sid)
        return sid


OWNER_TEMPLATES = {
    "new": "owner_new",
    "cancelled": "owner_cancelled",
    "rescheduled": "owner_rescheduled",
}


def build_owner_message(business, appointment, action: str) -> str:
    """Render one of the three owner notification shapes."""
    template = OWNER_TEMPLATES[action]
    customer_phone = appointment.customer_phone
    calendar_note = " ונוסף ליומן Google שלך" if appointment.google_event_id else ""
    return get_text(
        template,
        business_name=business.name,
        customer_name=appointment.customer_name or customer_phone,
        customer_phone=customer_phone,
        duration=appointment.duration,
        calendar_note=calendar_note,
        **date_parts(appointment.start_time),
    )


async def notify_owner(messenger, business, appointment, action: str) -> bool:
    """Best-effort owner notification. Never raises."""
    if not business.owner_phone:
        return False

    message = build_owner_message(business, appointment, action)
    try:
        await messenger.send(business.owner_phone, message)
    except CollaboratorUnavailable as e:
        logger.warning(
            "owner_notification_failed",
            business_id=business.id,
            appointment_id=appointment.id,
            action=action,
            error=str(e),
        )
        return False

    logger.info("owner_notified", business_id=business.id, appointment_id=appointment.id, action=action)
    return True
