"""Conversation turn handling: history, model call, directive execution, persistence."""

from typing import Optional
from datetime import datetime

from bookingbot.clock import now_local
from bookingbot.config import config
from bookingbot.context import BookingContext
from bookingbot.database import storage_errors
from bookingbot.db_models import ConversationRole
from bookingbot.directives import apply_directive, strip_system_annotations
from bookingbot.errors import CollaboratorUnavailable
from bookingbot.language import get_text, is_new_session_message
from bookingbot.llm_agent import build_context, build_system_prompt, generate_reply, time_annotation
from bookingbot.logging_config import get_logger
from bookingbot.services import ConversationService

logger = get_logger(__name__)


async def handle_incoming_message(
    ctx: BookingContext,
    customer_phone: str,
    text: str,
    llm_client=None,
    now: Optional[datetime] = None,
) -> str:
    """
    Produce the reply for one inbound customer message.

    Returns:
        The customer-facing text. Never contains directive syntax or system
        annotations; on any collaborator failure it is the fixed apology.
    """
    business = ctx.business
    business_id = business.id
    now = now or now_local()
    text = strip_system_annotations(text)

    try:
        if is_new_session_message(text):
            ConversationService.purge_customer(ctx.db, business_id, customer_phone)

        turns = ConversationService.get_history(ctx.db, business_id, customer_phone, limit=config.HISTORY_LIMIT)
        history = [{"role": t.role.value, "content": t.content} for t in turns]

        context = build_context(ctx.db, business, customer_phone, now=now)
        reply = await generate_reply(
            build_system_prompt(context),
            history,
            f"{time_annotation(now)} {text}",
            client=llm_client,
        )

        with storage_errors(ctx.db, "apply_directive"):
            final = strip_system_annotations(await apply_directive(ctx, customer_phone, reply))
    except CollaboratorUnavailable as e:
        logger.error("agent_turn_failed", business_id=business_id, collaborator=e.collaborator, error=str(e))
        return get_text("technical_error")

    if not final:
        final = get_text("directive_unclear")

    try:
        ConversationService.add_turn(ctx.db, business_id, customer_phone, ConversationRole.USER, text)
        ConversationService.add_turn(ctx.db, business_id, customer_phone, ConversationRole.ASSISTANT, final)
    except CollaboratorUnavailable as e:
        # The reply still goes out; only the memory of this turn is lost.
        logger.error("conversation_not_saved", business_id=business_id, error=str(e))

    logger.info("agent_turn_completed", business_id=business_id, history_turns=len(history))
    return final
