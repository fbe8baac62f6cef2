"""
Usage router.

Quota checks and the hooks feature code calls around a creation:
- ``can-create`` before the write
- ``created`` after a successful write
- ``creation-error`` when the database rejected it
"""

from fastapi import APIRouter, status

from tierkeeper.apps.tiers.dependencies import Quota, Reconciler
from tierkeeper.apps.tiers.schemas import (
    CreationErrorRequest,
    CreationErrorResponse,
    QuotaDecisionResponse,
    UpgradePromptResponse,
)
from tierkeeper.core.config import request_logger
from tierkeeper.core.dependencies.auth import CurrentUser
from tierkeeper.core.enums import FeatureKind
from tierkeeper.core.exceptions.handlers import exception_schema


router = APIRouter(prefix="/usage", tags=["Usage"], responses=exception_schema)


@router.get(
    "/upgrade-prompt",
    response_model=UpgradePromptResponse,
    summary="Get the upgrade dialog state",
)
async def get_upgrade_prompt(user: CurrentUser, quota: Quota) -> UpgradePromptResponse:
    prompt = quota.upgrade_prompt(user.id)
    if prompt is None:
        return UpgradePromptResponse(open=False)
    return UpgradePromptResponse(open=True, kind=prompt.kind)


@router.delete(
    "/upgrade-prompt",
    response_model=UpgradePromptResponse,
    summary="Dismiss the upgrade dialog",
)
async def dismiss_upgrade_prompt(
    user: CurrentUser, quota: Quota
) -> UpgradePromptResponse:
    request_logger.info(f"DELETE /usage/upgrade-prompt - user={user.id}")
    quota.dismiss_upgrade_prompt(user.id)
    return UpgradePromptResponse(open=False)


@router.get(
    "/{kind}/can-create",
    response_model=QuotaDecisionResponse,
    summary="Check whether the caller may create one more item",
    description="""
## Can Create

Free tiers are admitted while `used < limit` for the kind. Premium and
university tiers are always admitted. If no snapshot could be loaded the
answer is `false` with outcome `unknown_state`.
""",
)
async def can_create(
    kind: FeatureKind, user: CurrentUser, reconciler: Reconciler, quota: Quota
) -> QuotaDecisionResponse:
    request_logger.info(f"GET /usage/{kind.value}/can-create - user={user.id}")
    state = await reconciler.snapshot_for(user.id, user.email)
    decision = quota.check_state(state, kind)
    return QuotaDecisionResponse(
        kind=kind,
        allowed=decision.allowed,
        outcome=decision.outcome,
        used=decision.used,
        limit=decision.limit,
    )


@router.post(
    "/{kind}/created",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Report a successful creation",
)
async def report_created(
    kind: FeatureKind, user: CurrentUser, quota: Quota
) -> dict[str, str]:
    """Schedule a refresh so the next check sees the new count."""
    request_logger.info(f"POST /usage/{kind.value}/created - user={user.id}")
    quota.on_creation_success(user.id, user.email, kind)
    return {"status": "refresh_scheduled"}


@router.post(
    "/{kind}/creation-error",
    response_model=CreationErrorResponse,
    summary="Report a failed creation",
    description="""
## Creation Error

Pass the error message of a rejected write. Quota rejections
("usage limit exceeded", "upgrade to premium", "usage limit") open the upgrade
dialog for the kind and schedule a refresh; `handled` is then `true`. Any
other message is left to the caller.
""",
)
async def report_creation_error(
    kind: FeatureKind,
    payload: CreationErrorRequest,
    user: CurrentUser,
    quota: Quota,
) -> CreationErrorResponse:
    request_logger.info(f"POST /usage/{kind.value}/creation-error - user={user.id}")
    handled = quota.on_creation_error(user.id, user.email, payload.message, kind)
    return CreationErrorResponse(handled=handled, kind=kind)
