"""
Async job processing with Celery.
For deployments that run calendar sync and cleanup in a separate worker instead of the web process.
"""

import asyncio

from celery import Celery
from bookingbot.config import config

# Initialize Celery with Redis broker
celery_app = Celery(
    'bookingbot',
    broker=config.REDIS_URL,
    backend=config.REDIS_URL
)

# Celery configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=config.BUSINESS_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    beat_schedule={
        'calendar-sync': {
            'task': 'calendar_sync',
            'schedule': float(config.CALENDAR_SYNC_INTERVAL_SECONDS),
        },
        'cleanup': {
            'task': 'cleanup',
            'schedule': float(config.CLEANUP_INTERVAL_SECONDS),
        },
    },
)


@celery_app.task(name='calendar_sync')
def calendar_sync_task():
    """
    Reconcile every calendar-connected business.

    Returns:
        dict: per-business counts of added, cancelled and moved appointments
    """
    from bookingbot.calendar_sync import run_calendar_sync
    from bookingbot.database import SessionLocal
    from bookingbot.logging_config import logger

    reports = asyncio.run(run_calendar_sync(SessionLocal))
    logger.info("calendar_sync_task_completed", businesses=len(reports))
    return {
        "status": "success",
        "businesses": [
            {"business_id": r.business_id, "added": r.added, "cancelled": r.cancelled, "moved": r.moved}
            for r in reports
        ],
    }


@celery_app.task(name='cleanup')
def cleanup_task():
    """Run the retention sweep once."""
    from bookingbot.cleanup import sweep
    from bookingbot.database import session_scope

    with session_scope() as db:
        report = asyncio.run(sweep(db))
    return {
        "status": "success" if not report.failed_steps else "partial",
        "completed": report.completed,
        "conversations_purged": report.conversations_purged,
        "placeholders_cancelled": report.placeholders_cancelled,
        "far_future_cancelled": report.far_future_cancelled,
        "calendar_events_deleted": report.calendar_events_deleted,
        "failed_steps": report.failed_steps,
    }
