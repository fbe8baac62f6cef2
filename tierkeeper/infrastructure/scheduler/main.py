"""
Scheduler for the periodic tier refresh.

One interval job per open tier session, held in the in-memory job store.
Jobs belong to the API process that opened the session, so they are not
persisted.
"""

from datetime import timezone

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tierkeeper.core.config import scheduler_logger, settings


scheduler = AsyncIOScheduler(timezone=timezone.utc)


def tier_refresh_job_id(user_id: str) -> str:
    return f"tier_refresh:{user_id}"


def schedule_tier_refresh_job(
    user_id: str,
    email: str,
    interval_seconds: int | None = None,
) -> bool:
    """
    Schedule the interval refresh for one user, replacing any existing job.

    Returns:
        False when the scheduler is not running and nothing was scheduled.
    """
    # Import here to avoid circular import issues
    from tierkeeper.infrastructure.scheduler.jobs import refresh_user_tier

    if not scheduler.running:
        scheduler_logger.warning(
            f"Scheduler not running, no interval refresh for {user_id}"
        )
        return False

    seconds = interval_seconds or settings.TIER_REFRESH_INTERVAL_SECONDS
    scheduler.add_job(
        refresh_user_tier,
        trigger=IntervalTrigger(seconds=seconds, timezone=timezone.utc),
        replace_existing=True,
        id=tier_refresh_job_id(user_id),
        kwargs={"user_id": user_id, "email": email},
        coalesce=True,
        max_instances=1,
        misfire_grace_time=seconds,
    )
    scheduler_logger.info(f"Tier refresh for {user_id} scheduled every {seconds}s")
    return True


def remove_tier_refresh_job(user_id: str) -> bool:
    """Remove the user's interval refresh. Returns False if there was none."""
    try:
        scheduler.remove_job(tier_refresh_job_id(user_id))
    except JobLookupError:
        return False
    scheduler_logger.info(f"Tier refresh for {user_id} removed")
    return True


__all__ = [
    "remove_tier_refresh_job",
    "schedule_tier_refresh_job",
    "scheduler",
    "tier_refresh_job_id",
]
