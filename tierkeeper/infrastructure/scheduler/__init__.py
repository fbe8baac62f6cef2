from tierkeeper.infrastructure.scheduler.jobs import refresh_user_tier
from tierkeeper.infrastructure.scheduler.main import (
    remove_tier_refresh_job,
    schedule_tier_refresh_job,
    scheduler,
    tier_refresh_job_id,
)

__all__ = [
    "scheduler",
    "refresh_user_tier",
    "remove_tier_refresh_job",
    "schedule_tier_refresh_job",
    "tier_refresh_job_id",
]
