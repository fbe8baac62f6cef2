"""
Tier router.

This module provides endpoints for:
- Reading the caller's tier snapshot
- Forcing a reconciliation with Stripe
- Opening and closing a reconciliation session
"""

from fastapi import APIRouter, status

from tierkeeper.apps.tiers.dependencies import Quota, Reconciler
from tierkeeper.apps.tiers.schemas import SessionResponse, TierResponse, TierState
from tierkeeper.apps.tiers.services.quota import is_premium
from tierkeeper.core.config import request_logger, settings
from tierkeeper.core.dependencies.auth import CurrentUser
from tierkeeper.core.enums import RefreshTrigger
from tierkeeper.core.exceptions.handlers import exception_schema


router = APIRouter(prefix="/tier", tags=["Tier"], responses=exception_schema)


def _tier_response(state: TierState) -> TierResponse:
    return TierResponse.from_state(state, is_premium=is_premium(state.snapshot))


@router.get(
    "",
    response_model=TierResponse,
    summary="Get the caller's tier snapshot",
    description="""
## Get Tier Snapshot

Returns the published snapshot for an open session. Without a session the
cached profile is read (and created as free/inactive on first access).

| Field | Description |
|-------|-------------|
| `snapshot` | Tier, subscription status, end date, usage counters and Stripe ids |
| `loading` | True while the session's first reconciliation is running |
| `possibly_stale` | True when Stripe was unreachable and the cache was served |
| `is_premium` | Tier is `premium` or `university` |
""",
)
async def get_tier(user: CurrentUser, reconciler: Reconciler) -> TierResponse:
    request_logger.info(f"GET /tier - user={user.id}")
    state = await reconciler.snapshot_for(user.id, user.email)
    return _tier_response(state)


@router.post(
    "/refresh",
    response_model=TierResponse,
    summary="Reconcile the caller's tier with Stripe",
    description="""
## Refresh Tier

Fetches the subscription status from Stripe, writes it to the profile and
returns it. If Stripe cannot be reached the cached profile is returned with
`possibly_stale=true`; this endpoint does not fail on processor errors.
""",
)
async def refresh_tier(user: CurrentUser, reconciler: Reconciler) -> TierResponse:
    request_logger.info(f"POST /tier/refresh - user={user.id}")
    state = await reconciler.refresh(
        user.id, user.email, trigger=RefreshTrigger.EXPLICIT
    )
    return _tier_response(state)


@router.post(
    "/session",
    response_model=TierResponse,
    summary="Open a reconciliation session",
    description=f"""
## Open Session

Runs the app-start reconciliation and refreshes the caller's tier every
{settings.TIER_REFRESH_INTERVAL_SECONDS} seconds until the session is closed.
Opening an already open session restarts its interval.
""",
)
async def open_session(user: CurrentUser, reconciler: Reconciler) -> TierResponse:
    request_logger.info(f"POST /tier/session - user={user.id}")
    state = await reconciler.open_session(user.id, user.email)
    return _tier_response(state)


@router.delete(
    "/session",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
    summary="Close the reconciliation session",
)
async def close_session(
    user: CurrentUser, reconciler: Reconciler, quota: Quota
) -> SessionResponse:
    """Stop the interval refresh and drop the in-memory state."""
    request_logger.info(f"DELETE /tier/session - user={user.id}")
    if not reconciler.close_session(user.id):
        request_logger.info(f"No open tier session for {user.id}")
    quota.dismiss_upgrade_prompt(user.id)
    return SessionResponse(user_id=user.id, active=False)
