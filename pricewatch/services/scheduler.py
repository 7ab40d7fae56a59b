# pricewatch/services/scheduler.py

"""
APScheduler wiring for the daily price refresh.

Schedule
--------
  price_refresh: every day at ``SCHEDULE_HOUR:SCHEDULE_MINUTE`` in
                 ``SCHEDULE_TIMEZONE`` (00:00 Asia/Kolkata by default)

The trigger only says *when*. Overlap protection lives in
``PriceRefreshOrchestrator.run`` so that a manual pass and a scheduled
pass on the same orchestrator can never run together.
"""

from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from pricewatch.config.settings import Settings
from pricewatch.models.run_summary import RunSummary
from pricewatch.services.refresh_orchestrator import PriceRefreshOrchestrator
from pricewatch.storage.tracked_item_db import RepositoryUnavailableError

logger = logging.getLogger("pricewatch.scheduler")

JOB_ID = "price_refresh"


def run_refresh_job(
    orchestrator: PriceRefreshOrchestrator,
) -> RunSummary | None:
    """Run one pass from a scheduler thread and log its outcome.

    Returns ``None`` when the store was unavailable; the error is
    logged so the scheduler keeps firing on later days.
    """
    logger.info("Running scheduled price update")
    try:
        summary = asyncio.run(orchestrator.run())
    except RepositoryUnavailableError as exc:
        logger.error("Scheduled price update failed: %s", exc)
        return None

    if summary.rejected:
        logger.warning(summary.describe())
    else:
        logger.info(summary.describe())
        for error in summary.errors:
            logger.warning("  %s", error)
    return summary


def build_scheduler(
    orchestrator: PriceRefreshOrchestrator,
    *,
    background: bool = False,
    hour: int | None = None,
    minute: int | None = None,
    timezone: str | None = None,
) -> BaseScheduler:
    """
    Register the daily refresh job on a new scheduler.

    Returns a configured but *not yet started* scheduler; a
    ``BlockingScheduler`` for the CLI or a ``BackgroundScheduler`` when
    *background* is set. The caller starts and shuts it down.
    """
    tz = timezone or Settings.SCHEDULE_TIMEZONE
    fire_hour = Settings.SCHEDULE_HOUR if hour is None else hour
    fire_minute = Settings.SCHEDULE_MINUTE if minute is None else minute
    scheduler: BaseScheduler = (
        BackgroundScheduler(timezone=tz)
        if background
        else BlockingScheduler(timezone=tz)
    )

    scheduler.add_job(
        run_refresh_job,
        trigger="cron",
        args=[orchestrator],
        hour=fire_hour,
        minute=fire_minute,
        timezone=tz,
        id=JOB_ID,
        name="Daily price refresh",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    logger.info(
        "Price refresh scheduled daily at %02d:%02d %s",
        fire_hour,
        fire_minute,
        tz,
    )
    return scheduler
