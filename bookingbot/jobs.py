"""
In-process background jobs.
Calendar reconciliation and the retention sweep run as asyncio loops inside the web process.
"""

import asyncio
from typing import Awaitable, Callable, List

from bookingbot.calendar_sync import run_calendar_sync
from bookingbot.cleanup import remove_calendar_events, run_cleanup
from bookingbot.config import config
from bookingbot.database import SessionLocal, session_scope
from bookingbot.logging_config import get_logger

logger = get_logger(__name__)


async def calendar_sync_job():
    await run_calendar_sync(SessionLocal)


async def cleanup_job():
    with session_scope() as db:
        # Sweep steps are synchronous database work
        report = await asyncio.to_thread(run_cleanup, db)
        await remove_calendar_events(db, report.calendar_removals)


async def run_periodically(name: str, job: Callable[[], Awaitable], interval: float, startup_delay: float):
    """Run ``job`` after ``startup_delay`` seconds and then every ``interval`` seconds until cancelled."""
    await asyncio.sleep(startup_delay)
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("background_job_failed", job=name, error=str(e))
        await asyncio.sleep(interval)


def start_background_jobs() -> List[asyncio.Task]:
    tasks = [
        asyncio.create_task(run_periodically(
            "calendar_sync",
            calendar_sync_job,
            config.CALENDAR_SYNC_INTERVAL_SECONDS,
            config.CALENDAR_SYNC_STARTUP_DELAY_SECONDS,
        )),
        asyncio.create_task(run_periodically(
            "cleanup",
            cleanup_job,
            config.CLEANUP_INTERVAL_SECONDS,
            config.CLEANUP_STARTUP_DELAY_SECONDS,
        )),
    ]
    logger.info("background_jobs_started", jobs=["calendar_sync", "cleanup"])
    return tasks


async def stop_background_jobs(tasks: List[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("background_jobs_stopped")
