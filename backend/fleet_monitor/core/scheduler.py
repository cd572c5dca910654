"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(service) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from fleet_monitor.config import settings

    scheduler = AsyncIOScheduler()

    # Reload identity mappings every N minutes
    scheduler.add_job(
        service.scheduled_refresh,
        "interval",
        minutes=settings.mapping_refresh_minutes,
        id="refresh_mappings",
        name="Refresh identity mapping tables",
        max_instances=1,
        coalesce=True,
    )

    logger.debug("Scheduled mapping refresh every %d minutes", settings.mapping_refresh_minutes)
    return scheduler
