"""Dedicated APScheduler worker process."""
from __future__ import annotations

import asyncio
import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from habitbingo.core.config import settings
from habitbingo.core.logging import configure_logging
from habitbingo.db.session import create_schema
from habitbingo.observability.client import init_opik
from habitbingo.services.oracle import build_oracle
from habitbingo.services.state_owner import HabitBingoState

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)
    init_opik()
    create_schema()

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        _register_jobs(scheduler)
        scheduler.start()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def _register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        run_daily_refresh_job,
        trigger="cron",
        hour=settings.daily_refresh_hour,
        minute=settings.daily_refresh_minute,
        id="daily_board_refresh",
        replace_existing=True,
    )
    logger.info(
        "Registered scheduler jobs (time=%02d:%02d %s)",
        settings.daily_refresh_hour,
        settings.daily_refresh_minute,
        settings.scheduler_timezone,
    )


async def daily_refresh(owner: HabitBingoState) -> bool:
    """Rebuild missing habit maps, then refill the board. Returns False if a refresh was already running."""
    missing = await owner.ensure_habit_maps()
    if missing:
        logger.info("Building %s missing habit map(s) before refresh", len(missing))
    await owner.wait_for_pipelines()
    board = await owner.refresh_board()
    return board is not None


def run_daily_refresh_job() -> None:
    owner = HabitBingoState(oracle=build_oracle())
    try:
        refreshed = asyncio.run(daily_refresh(owner))
        logger.info("Daily board refresh complete (refreshed=%s)", refreshed)
    except Exception:  # pragma: no cover
        logger.exception("Daily board refresh failed")


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
