"""
Health check and monitoring endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from bookingbot import database
from bookingbot.config import config
from bookingbot.logging_config import logger

router = APIRouter(tags=["Health & Monitoring"])

SERVICE_NAME = "bookingbot"
VERSION = "1.0.0"


# GET /health
# Gets: nothing
# Returns: {status, service, version}
# Example:
#   curl http://localhost:8000/health
@router.get("/health")
async def health_check():
    """Liveness check."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
    }


def _database_ok() -> bool:
    try:
        database.ping()
        return True
    except Exception as e:
        logger.warning("readiness_check_database", status="error", error=str(e))
        return False


# GET /health/ready
# Gets: nothing
# Returns: dependency checks; 503 when the database is unreachable
# Example:
#   curl http://localhost:8000/health/ready
@router.get("/health/ready")
async def readiness_check():
    """
    Readiness check.

    The database is required. OpenAI, Twilio and Google OAuth are reported
    but do not block readiness.
    """
    checks = {
        "database": _database_ok(),
        "openai": config.has_openai_key() or "not_configured",
        "twilio": config.has_twilio_config() or "not_configured",
        "google_oauth": config.has_google_oauth() or "not_configured",
    }
    checks["ready"] = checks["database"] is True

    return JSONResponse(content=checks, status_code=200 if checks["ready"] else 503)


# GET /health/info
# Gets: nothing
# Returns: service configuration summary
# Example:
#   curl http://localhost:8000/health/info
@router.get("/health/info")
async def system_info():
    """System information and configuration status."""
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "configuration": {
            "openai_configured": config.has_openai_key(),
            "openai_model": config.OPENAI_MODEL if config.has_openai_key() else None,
            "business_timezone": config.BUSINESS_TIMEZONE,
            "background_jobs": config.RUN_BACKGROUND_JOBS,
            "debug_mode": config.DEBUG,
        },
        "features": {
            "llm_conversations": config.has_openai_key(),
            "whatsapp_integration": config.has_twilio_config(),
            "google_calendar": config.has_google_oauth(),
            "calendar_sync_interval_seconds": config.CALENDAR_SYNC_INTERVAL_SECONDS,
        },
    }
