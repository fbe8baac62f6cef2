"""
Routers for the tier domain.
"""

from tierkeeper.apps.tiers.routers.billing import router as billing_router
from tierkeeper.apps.tiers.routers.tier import router as tier_router
from tierkeeper.apps.tiers.routers.usage import router as usage_router
from tierkeeper.apps.tiers.routers.webhook import router as webhook_router

__all__ = ["billing_router", "tier_router", "usage_router", "webhook_router"]
