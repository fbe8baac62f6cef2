from tierkeeper.core.config import scheduler_logger
from tierkeeper.core.enums import RefreshTrigger


async def refresh_user_tier(user_id: str, email: str) -> None:
    """
    Interval task reconciling one user's tier with Stripe.

    Args:
        user_id (str): The user whose session scheduled the job.
        email (str): The user's contact address.
    """
    from tierkeeper.apps.tiers.dependencies import get_reconciler

    scheduler_logger.info(f"Running interval tier refresh for {user_id}")
    state = await get_reconciler().refresh(
        user_id, email, trigger=RefreshTrigger.INTERVAL
    )
    scheduler_logger.info(
        f"Interval tier refresh for {user_id} done (seq={state.sequence}, "
        f"stale={state.possibly_stale})"
    )
