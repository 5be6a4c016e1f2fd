"""Main FastAPI application."""

from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from bookingbot.config import config
from bookingbot.database import init_db
from bookingbot.jobs import start_background_jobs, stop_background_jobs
from bookingbot.logging_config import logger
from bookingbot.metrics import api_requests_total, api_request_duration


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("application_starting", version="1.0.0")
    init_db()
    logger.info("database_initialized")
    logger.info("openai_configured", configured=config.has_openai_key())
    logger.info("twilio_configured", configured=config.has_twilio_config())

    tasks = start_background_jobs() if config.RUN_BACKGROUND_JOBS else []

    yield

    logger.info("application_shutting_down")
    if tasks:
        await stop_background_jobs(tasks)


app = FastAPI(
    title="WhatsApp Booking Bot API",
    description="Hebrew WhatsApp assistant that books, reschedules and cancels appointments",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    api_request_duration.observe(time.perf_counter() - started)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    api_requests_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    return response


from bookingbot.health import router as health_router
from bookingbot.routers.whatsapp import router as whatsapp_router
from bookingbot.routers.agent import router as agent_router
from bookingbot.routers.calendar_oauth import router as calendar_router
from bookingbot.routers.admin import router as admin_router

app.include_router(health_router)
app.include_router(whatsapp_router)
app.include_router(agent_router)
app.include_router(calendar_router)
app.include_router(admin_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "🤖 WhatsApp Booking Bot",
        "version": "1.0.0",
        "endpoints": {
            "webhook": "/webhook",
            "agent_turn": "/agent/turn",
            "connect_calendar": "/connect-calendar?business_id=<id>",
            "oauth_callback": "/oauth2callback",
            "health": "/health",
            "metrics": "/metrics",
            "debug_appointments": "/debug/appointments",
        },
    }


@app.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
