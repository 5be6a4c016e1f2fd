from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from sqlalchemy.orm import Session

from bookingbot.calendar_client import build_authorization_url, exchange_code
from bookingbot.config import config
from bookingbot.database import get_db
from bookingbot.errors import CollaboratorUnavailable
from bookingbot.language import get_text
from bookingbot.logging_config import logger
from bookingbot.services import BusinessService

router = APIRouter(tags=["Calendar"])


# GET /connect-calendar?business_id=1
# Gets: business_id query parameter
# Returns: redirect to the Google consent screen
# Example:
#   open http://localhost:8000/connect-calendar?business_id=1
@router.get("/connect-calendar")
async def connect_calendar(business_id: int = None, db: Session = Depends(get_db)):
    """Start the Google OAuth flow for one business."""
    if not business_id:
        return PlainTextResponse("❌ Missing business_id", status_code=400)

    if not config.has_google_oauth():
        return PlainTextResponse("❌ Google OAuth is not configured", status_code=503)

    if not BusinessService.get_business(db, business_id):
        return PlainTextResponse(f"❌ Business {business_id} not found", status_code=404)

    logger.info("calendar_connect_started", business_id=business_id)
    return RedirectResponse(build_authorization_url(business_id))


# GET /oauth2callback?code=...&state=<business_id>
# Gets: Google's authorization code and the business id in state
# Returns: Hebrew HTML confirmation page
@router.get("/oauth2callback")
async def oauth2_callback(code: str = None, state: str = None, db: Session = Depends(get_db)):
    """Exchange the authorization code and store the tokens on the business."""
    if not code:
        return PlainTextResponse("❌ Authorization failed", status_code=400)

    try:
        business_id = int(state or "")
    except ValueError:
        logger.warning("calendar_connect_bad_state", state=state)
        return PlainTextResponse(get_text("calendar_connect_failed"), status_code=400)

    try:
        tokens = await exchange_code(code)
    except CollaboratorUnavailable as e:
        logger.error("calendar_connect_failed", business_id=business_id, error=str(e))
        return PlainTextResponse(get_text("calendar_connect_failed"), status_code=502)

    business = BusinessService.connect_calendar(db, business_id, tokens)
    if not business:
        return PlainTextResponse(get_text("calendar_connect_failed"), status_code=404)

    return HTMLResponse(get_text("calendar_connected_page"))
