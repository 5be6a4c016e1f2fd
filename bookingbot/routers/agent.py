from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from bookingbot.agent_logic import handle_incoming_message
from bookingbot.config import config
from bookingbot.context import BookingContext
from bookingbot.database import get_db
from bookingbot.messaging import normalize_phone
from bookingbot.models import AgentTurnRequest, AgentTurnResponse
from bookingbot.security import verify_api_key
from bookingbot.services import BusinessService

router = APIRouter(tags=["Agent"])


# POST /agent/turn
# Gets: JSON body {business_id: int, customer_phone: str, message: str}
# Returns: AgentTurnResponse {reply: str}
# Example:
#   curl -X POST http://localhost:8000/agent/turn \
#     -H 'Content-Type: application/json' -H 'X-API-Key: ...' \
#     -d '{"business_id": 1, "customer_phone": "+972501234567", "message": "היי, אפשר תור למחר?"}'
@router.post("/agent/turn", response_model=AgentTurnResponse)
async def agent_turn(
    request: AgentTurnRequest,
    db: Session = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Run one conversation turn without WhatsApp. Bookings are real; the reply is returned instead of sent."""

    if not config.has_openai_key():
        raise HTTPException(status_code=503, detail="OpenAI is not configured")

    business = BusinessService.get_business(db, request.business_id)
    if not business:
        raise HTTPException(status_code=404, detail=f"Business {request.business_id} not found")

    ctx = BookingContext.for_business(db, business)
    reply = await handle_incoming_message(ctx, normalize_phone(request.customer_phone), request.message)
    return AgentTurnResponse(reply=reply)
