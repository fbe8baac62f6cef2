"""
Usage quota enforcement.

Admission decisions are pure functions of a tier snapshot and a feature
kind. The enforcer adds the upgrade-prompt state and the refresh triggers
that follow a creation attempt.

Free limits are independent per kind and come from settings.
"""

from dataclasses import dataclass

from tierkeeper.apps.tiers.schemas.tier import TierSnapshot, TierState
from tierkeeper.apps.tiers.services.reconciler import TierReconciler
from tierkeeper.core.config import Settings, settings, usage_logger
from tierkeeper.core.enums import FeatureKind, QuotaOutcome, RefreshTrigger, UserTier

PREMIUM_TIERS = (UserTier.PREMIUM, UserTier.UNIVERSITY)

# Phrases the database uses when it rejects a creation over quota
QUOTA_ERROR_PHRASES = ("usage limit exceeded", "upgrade to premium", "usage limit")


@dataclass(frozen=True)
class FreeLimits:
    courses: int
    tasks: int
    notes: int

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "FreeLimits":
        return cls(
            courses=config.FREE_LIMIT_COURSES,
            tasks=config.FREE_LIMIT_TASKS,
            notes=config.FREE_LIMIT_NOTES,
        )

    def limit(self, kind: FeatureKind) -> int:
        match kind:
            case FeatureKind.COURSES:
                return self.courses
            case FeatureKind.TASKS:
                return self.tasks
            case FeatureKind.NOTES:
                return self.notes
            case _:
                raise ValueError(f"Unknown feature kind: {kind!r}")


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of an admission check.

    ``used`` and ``limit`` are None when they do not apply: no snapshot
    (both) or a premium tier (limit).
    """

    outcome: QuotaOutcome
    kind: FeatureKind
    used: int | None = None
    limit: int | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome == QuotaOutcome.ADMITTED


@dataclass(frozen=True)
class UpgradePrompt:
    kind: FeatureKind


def is_premium(snapshot: TierSnapshot | None) -> bool:
    return snapshot is not None and snapshot.tier in PREMIUM_TIERS


def check(
    snapshot: TierSnapshot | None, kind: FeatureKind, limits: FreeLimits
) -> QuotaDecision:
    """
    Decide whether one more item of ``kind`` may be created.

    A missing snapshot is denied: quota state that was never loaded is not
    a licence to create.
    """
    if snapshot is None:
        return QuotaDecision(outcome=QuotaOutcome.UNKNOWN_STATE, kind=kind)

    used = snapshot.used(kind)
    if is_premium(snapshot):
        return QuotaDecision(outcome=QuotaOutcome.ADMITTED, kind=kind, used=used)

    limit = limits.limit(kind)
    outcome = QuotaOutcome.ADMITTED if used < limit else QuotaOutcome.QUOTA_EXCEEDED
    return QuotaDecision(outcome=outcome, kind=kind, used=used, limit=limit)


def can_create(
    snapshot: TierSnapshot | None, kind: FeatureKind, limits: FreeLimits
) -> bool:
    return check(snapshot, kind, limits).allowed


def is_quota_error(error: BaseException | str) -> bool:
    message = str(error).lower()
    return any(phrase in message for phrase in QUOTA_ERROR_PHRASES)


class QuotaEnforcer:
    """Quota decisions plus the upgrade-prompt state per user."""

    def __init__(self, reconciler: TierReconciler, limits: FreeLimits | None = None):
        self._reconciler = reconciler
        self.limits = limits or FreeLimits.from_settings()
        self._prompts: dict[str, UpgradePrompt] = {}

    def check(self, snapshot: TierSnapshot | None, kind: FeatureKind) -> QuotaDecision:
        decision = check(snapshot, kind, self.limits)
        if not decision.allowed:
            usage_logger.info(
                f"Creation of {kind.value} denied: {decision.outcome.value} "
                f"(used={decision.used}, limit={decision.limit})"
            )
        return decision

    def can_create(self, snapshot: TierSnapshot | None, kind: FeatureKind) -> bool:
        return self.check(snapshot, kind).allowed

    def check_state(self, state: TierState, kind: FeatureKind) -> QuotaDecision:
        """
        Like ``check``, for a published state.

        Counters marked unknown only matter on a free tier, so a free
        snapshot carrying them is treated as no snapshot.
        """
        snapshot = state.snapshot
        if state.usage_unknown and not is_premium(snapshot):
            snapshot = None
        return self.check(snapshot, kind)

    def on_creation_error(
        self,
        user_id: str,
        email: str,
        error: BaseException | str,
        kind: FeatureKind,
    ) -> bool:
        """
        Handle a creation rejected by the database.

        Args:
            user_id: The user whose creation failed.
            email: The user's contact address, for the refresh.
            error: The error or its message.
            kind: The feature kind that was being created.

        Returns:
            True if the error is a quota rejection. The upgrade prompt is
            then set and a refresh scheduled. False means the caller should
            treat it as an ordinary error.
        """
        if not is_quota_error(error):
            return False

        usage_logger.info(f"Quota rejection for {user_id} creating {kind.value}")
        self._prompts[user_id] = UpgradePrompt(kind=kind)
        # Server-side counters may have moved past the cached copy
        self._reconciler.schedule_refresh(user_id, email, RefreshTrigger.EXPLICIT)
        return True

    def on_creation_success(self, user_id: str, email: str, kind: FeatureKind):
        """Schedule a refresh so the new count is cached before the next check."""
        usage_logger.info(f"{kind.value} created by {user_id}, refreshing counters")
        return self._reconciler.schedule_refresh(
            user_id, email, RefreshTrigger.EXPLICIT
        )

    def upgrade_prompt(self, user_id: str) -> UpgradePrompt | None:
        return self._prompts.get(user_id)

    def dismiss_upgrade_prompt(self, user_id: str) -> bool:
        return self._prompts.pop(user_id, None) is not None


__all__ = [
    "FreeLimits",
    "PREMIUM_TIERS",
    "QUOTA_ERROR_PHRASES",
    "QuotaDecision",
    "QuotaEnforcer",
    "UpgradePrompt",
    "can_create",
    "check",
    "is_premium",
    "is_quota_error",
]
