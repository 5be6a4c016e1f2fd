from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import Response

from bookingbot import database
from bookingbot.agent_logic import handle_incoming_message
from bookingbot.context import BookingContext
from bookingbot.language import get_text
from bookingbot.logging_config import bind_conversation, clear_conversation, logger
from bookingbot.errors import CollaboratorUnavailable
from bookingbot.messaging import WhatsAppMessenger, normalize_phone
from bookingbot.metrics import messages_received
from bookingbot.security import verify_twilio_signature
from bookingbot.services import BusinessService

router = APIRouter(tags=["WhatsApp"])


async def _send_apology(to_address: str, customer_phone: str) -> None:
    try:
        await WhatsAppMessenger(from_number=to_address or None).send(customer_phone, get_text("technical_error"))
    except CollaboratorUnavailable as e:
        logger.error("whatsapp_apology_failed", customer_phone=customer_phone, error=str(e))


async def process_inbound_message(from_address: str, to_address: str, body: str, session_factory=None) -> None:
    """
    Handle one inbound WhatsApp message after the webhook has been acknowledged.

    Routes by the receiving number, runs the agent turn and sends the reply
    from that same number. Unexpected failures are logged and answered with
    the technical-error apology; nothing propagates.
    """
    customer_phone = normalize_phone(from_address)
    business_number = normalize_phone(to_address)
    bind_conversation(customer_phone=customer_phone)

    db = (session_factory or database.SessionLocal)()
    try:
        business = BusinessService.get_by_whatsapp_number(db, business_number)
        messenger = WhatsAppMessenger(from_number=to_address or None)

        if not business:
            logger.warning("business_not_found", whatsapp_number=business_number)
            await messenger.send(customer_phone, get_text("business_not_found"))
            return

        bind_conversation(business.id, customer_phone)
        ctx = BookingContext.for_business(db, business, messenger=messenger)
        reply = await handle_incoming_message(ctx, customer_phone, body)
        await messenger.send(customer_phone, reply)

    except CollaboratorUnavailable as e:
        logger.error("whatsapp_reply_failed", customer_phone=customer_phone, error=str(e))
    except Exception as e:
        db.rollback()
        logger.error("whatsapp_processing_failed", customer_phone=customer_phone, error=str(e))
        await _send_apology(to_address, customer_phone)
    finally:
        db.close()
        clear_conversation()


# POST /webhook
# Gets: Twilio WhatsApp form fields (From, To, Body, MessageSid, ...)
# Returns: empty 200; the reply is sent asynchronously through the Twilio API
# Example:
#   curl -X POST http://localhost:8000/webhook \
#     -d 'From=whatsapp:+972501234567&To=whatsapp:+14155238886&Body=שלום'
@router.post("/webhook", dependencies=[Depends(verify_twilio_signature)])
async def whatsapp_webhook(request: Request, background_tasks: BackgroundTasks):
    """Acknowledge Twilio immediately and process the message in the background."""
    form_data = await request.form()

    body = (form_data.get("Body") or "").strip()
    from_address = form_data.get("From", "")
    to_address = form_data.get("To", "")

    logger.info("whatsapp_message_received", message_sid=form_data.get("MessageSid", ""), from_number=from_address)

    if body and from_address:
        messages_received.inc()
        background_tasks.add_task(process_inbound_message, from_address, to_address, body)

    return Response(status_code=200)
