"""
Security utilities.
- API key authentication for the test and admin endpoints
- Twilio webhook signature validation
"""

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from twilio.request_validator import RequestValidator

from bookingbot.config import config
from bookingbot.logging_config import get_logger

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """
    Guard for the local-testing and admin endpoints.

    Usage:
        @router.get("/debug/appointments")
        async def list_appointments(api_key: str = Depends(verify_api_key)):
            ...
    """
    if not config.API_KEY:
        return "development"

    if api_key != config.API_KEY:
        logger.warning("api_key_rejected", provided_prefix=api_key[:4] if api_key else None)
        raise HTTPException(status_code=403, detail="Invalid or missing API key")

    return api_key


def public_url(request: Request) -> str:
    """The URL Twilio signed: BASE_URL plus path and query when behind a proxy."""
    if config.BASE_URL:
        url = config.BASE_URL.rstrip("/") + request.url.path
        if request.url.query:
            url += "?" + request.url.query
        return url
    return str(request.url)


async def verify_twilio_signature(request: Request) -> None:
    """
    Reject webhook calls that were not signed with our Twilio auth token.

    Only enforced when VALIDATE_TWILIO_SIGNATURE is on.
    """
    if not config.VALIDATE_TWILIO_SIGNATURE:
        return

    form = await request.form()
    signature = request.headers.get("X-Twilio-Signature", "")
    validator = RequestValidator(config.TWILIO_AUTH_TOKEN)
    params = {k: str(v) for k, v in form.items()}

    if not validator.validate(public_url(request), params, signature):
        logger.warning("twilio_signature_rejected", path=request.url.path)
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")
