from tierkeeper.apps.tiers.schemas.billing import (
    CancellationResponse,
    CheckoutRequest,
    RedirectResponse,
)
from tierkeeper.apps.tiers.schemas.tier import (
    SessionResponse,
    TierResponse,
    TierSnapshot,
    TierState,
)
from tierkeeper.apps.tiers.schemas.usage import (
    CreationErrorRequest,
    CreationErrorResponse,
    QuotaDecisionResponse,
    UpgradePromptResponse,
)

__all__ = [
    # Tier
    "SessionResponse",
    "TierResponse",
    "TierSnapshot",
    "TierState",
    # Billing
    "CancellationResponse",
    "CheckoutRequest",
    "RedirectResponse",
    # Usage
    "CreationErrorRequest",
    "CreationErrorResponse",
    "QuotaDecisionResponse",
    "UpgradePromptResponse",
]
