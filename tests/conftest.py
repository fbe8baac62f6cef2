"""
Pytest configuration and core fixtures.

Every test gets its own in-memory SQLite database (aiosqlite + StaticPool),
so profile writes never leak between tests. Stripe is never called: the
billing processor is a ``MagicMock`` shaped like the real facade.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

PRICE_TABLE_VALUES = {
    ("premium", "monthly"): "price_premium_monthly",
    ("premium", "yearly"): "price_premium_yearly",
    ("university", "monthly"): "price_university_monthly",
    ("university", "yearly"): "price_university_yearly",
}


def pytest_configure(config):
    """Configure the environment before the application is imported."""
    os.environ["ENVIRONMENT"] = "test"
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
    os.environ["ENABLE_SCHEDULER"] = "false"
    os.environ["OPERATION_LOCK_BACKEND"] = "memory"
    os.environ["SENTRY_DSN"] = ""


def create_test_access_token(user_id: str, email: str | None) -> str:
    from tierkeeper.core.utils import create_jwt_token

    claims: dict[str, Any] = {"sub": user_id}
    if email is not None:
        claims["email"] = email
    return create_jwt_token(data=claims, expires_delta=timedelta(minutes=15))


@pytest.fixture
def price_table():
    from tierkeeper.core.enums import BillingPeriod, UserTier

    return {
        (UserTier(tier), BillingPeriod(period)): price
        for (tier, period), price in PRICE_TABLE_VALUES.items()
    }


@pytest.fixture
async def session_factory():
    """Session factory bound to a fresh in-memory database."""
    from tierkeeper.core.db import Base
    from tierkeeper.core.db import models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def profile_cache(session_factory):
    from tierkeeper.apps.tiers.services.profile_cache import ProfileCache

    return ProfileCache(session_factory=session_factory)


@pytest.fixture
def processor(price_table):
    """Billing processor facade with every Stripe call mocked.

    Defaults: no customer exists and the status check reports free/inactive.
    """
    from tierkeeper.apps.tiers.services.billing_processor import (
        BillingProcessor,
        ProcessorStatus,
    )

    mock = MagicMock(spec=BillingProcessor)
    mock.price_for.side_effect = lambda tier, period: price_table.get((tier, period))
    mock.find_customer_by_contact = AsyncMock(return_value=None)
    mock.get_customer = AsyncMock()
    mock.create_customer = AsyncMock()
    mock.get_subscription = AsyncMock()
    mock.list_active_subscriptions = AsyncMock(return_value=[])
    mock.update_subscription = AsyncMock()
    mock.create_checkout_session = AsyncMock()
    mock.create_portal_session = AsyncMock()
    mock.get_status_for_contact = AsyncMock(return_value=ProcessorStatus.free())
    return mock


@pytest.fixture
def stripe_client():
    """Stand-in for the ``Stripe`` class used by the real facade."""
    client = MagicMock()
    client.find_customer_by_email = AsyncMock(return_value=None)
    client.get_customer = AsyncMock()
    client.create_customer = AsyncMock()
    client.get_subscription = AsyncMock()
    client.list_subscriptions = AsyncMock(return_value=[])
    client.update_subscription = AsyncMock()
    client.create_checkout_session = AsyncMock()
    client.create_customer_portal_session = AsyncMock()
    return client


@pytest.fixture
def notifier():
    from tierkeeper.apps.tiers.services.notifier import LoggingNotifier

    return LoggingNotifier()


@pytest.fixture
def identity(processor, profile_cache):
    from tierkeeper.apps.tiers.services.identity import IdentityResolver

    return IdentityResolver(processor, profile_cache)


@pytest.fixture
def operations(processor, profile_cache, identity):
    from tierkeeper.apps.tiers.services.operations import BillingOperations

    return BillingOperations(
        processor, profile_cache, identity, default_origin="https://app.example.com"
    )


@pytest.fixture
def reconciler(processor, profile_cache, notifier):
    from tierkeeper.apps.tiers.services.reconciler import TierReconciler

    return TierReconciler(processor, profile_cache, notifier)


@pytest.fixture
def quota(reconciler):
    from tierkeeper.apps.tiers.services.quota import FreeLimits, QuotaEnforcer

    return QuotaEnforcer(reconciler, FreeLimits(courses=5, tasks=5, notes=5))


@pytest.fixture(autouse=True)
def reset_operation_lock():
    """Give every test a fresh in-memory billing lock."""
    from tierkeeper.apps.tiers.services.operation_lock import BillingOperationLock

    BillingOperationLock._reset()
    BillingOperationLock.init("memory")
    yield
    BillingOperationLock._reset()


@pytest.fixture
def user():
    from tierkeeper.core.dependencies.auth import AuthenticatedUser

    return AuthenticatedUser(id="user_123", email="learner@example.com")


@pytest.fixture
def auth_headers(user) -> dict[str, str]:
    token = create_test_access_token(user.id, user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_subscription():
    """Build a Stripe subscription model from a few fields."""
    from tierkeeper.core.services.payment.stripe.types import Subscription

    def _make(
        sub_id: str = "sub_123",
        status: str = "active",
        price_id: str | None = "price_premium_monthly",
        period_end: datetime | None = None,
        cancel_at_period_end: bool = False,
        customer: str = "cus_123",
    ) -> Subscription:
        if period_end is None:
            period_end = datetime.now(timezone.utc) + timedelta(days=30)
        items = []
        if price_id is not None:
            items.append({"id": f"si_{sub_id}", "price": {"id": price_id}})
        return Subscription.model_validate(
            {
                "id": sub_id,
                "customer": customer,
                "status": status,
                "cancel_at_period_end": cancel_at_period_end,
                "current_period_end": int(period_end.timestamp()),
                "items": {"data": items},
            }
        )

    return _make


@pytest.fixture
def app(profile_cache, processor, operations, reconciler, quota):
    """FastAPI app with the tier services swapped for the test instances."""
    from tierkeeper.apps.tiers import dependencies
    from tierkeeper.main import app as fastapi_app

    fastapi_app.dependency_overrides[dependencies.get_profile_cache] = (
        lambda: profile_cache
    )
    fastapi_app.dependency_overrides[dependencies.get_billing_processor] = (
        lambda: processor
    )
    fastapi_app.dependency_overrides[dependencies.get_billing_operations] = (
        lambda: operations
    )
    fastapi_app.dependency_overrides[dependencies.get_reconciler] = lambda: reconciler
    fastapi_app.dependency_overrides[dependencies.get_quota_enforcer] = lambda: quota
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app, reconciler) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    await reconciler.aclose()


@pytest.fixture
async def authenticated_client(
    client: AsyncClient, auth_headers: dict[str, str]
) -> AsyncClient:
    client.headers.update(auth_headers)
    return client
