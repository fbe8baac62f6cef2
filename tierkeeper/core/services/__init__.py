from tierkeeper.core.services.base import SingletonService
from tierkeeper.core.services.payment.stripe.main import Stripe
from tierkeeper.core.services.redis_service import RedisService

__all__ = [
    "RedisService",
    "SingletonService",
    "Stripe",
]
