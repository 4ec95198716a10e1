"""Cron-style driver that runs a resolution cycle every quarter hour."""

from __future__ import annotations

import logging
import signal
from typing import Any, Callable, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import SCHEDULE_CRON_MINUTE, SCHEDULE_MISFIRE_GRACE_SECONDS
from .engine import DuplicateResolver
from .models import CycleResult

LOGGER = logging.getLogger(__name__)

JOB_ID = "resolve-duplicates"


def run_tick(resolver: DuplicateResolver) -> Optional[CycleResult]:
    """Run one cycle; log and swallow anything that escapes it."""

    LOGGER.info("Starting duplicate resolution tick")
    try:
        return resolver.run_cycle()
    except Exception:
        LOGGER.exception("Duplicate resolution tick failed")
        return None


def build_scheduler(
    resolver: DuplicateResolver,
    *,
    minute: str = SCHEDULE_CRON_MINUTE,
    misfire_grace_time: int = SCHEDULE_MISFIRE_GRACE_SECONDS,
    scheduler_factory: Callable[..., Any] = BlockingScheduler,
) -> Any:
    scheduler = scheduler_factory(timezone="UTC")
    scheduler.add_job(
        run_tick,
        trigger=CronTrigger(minute=minute, second=0, timezone="UTC"),
        args=[resolver],
        id=JOB_ID,
        name="Hide duplicate indoor rides",
        # One overrunning cycle may overlap the next tick; the stores guard it.
        max_instances=2,
        coalesce=True,
        misfire_grace_time=misfire_grace_time,
        replace_existing=True,
    )
    return scheduler


def install_signal_handlers(resolver: DuplicateResolver, scheduler: Any) -> None:
    """Stop new fetches on SIGINT/SIGTERM and let in-flight hides finish."""

    def _handle(signum: int, _frame: Any) -> None:
        LOGGER.info("Received signal %s; shutting down after in-flight work", signum)
        resolver.stop_event.set()
        scheduler.shutdown(wait=True)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_forever(resolver: DuplicateResolver) -> None:
    scheduler = build_scheduler(resolver)
    install_signal_handlers(resolver, scheduler)
    LOGGER.info(
        "Scheduler started; cycles run at cron minute=%s (UTC)", SCHEDULE_CRON_MINUTE
    )
    scheduler.start()
    LOGGER.info("Scheduler stopped")
