"""
User-facing notices for subscription status transitions.

Delivery belongs to the UI layer; the reconciler only hands notices to a
``Notifier``.
"""

from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime

from tierkeeper.core.config import tier_logger
from tierkeeper.core.enums import SubscriptionStatus


@dataclass(frozen=True)
class SubscriptionNotice:
    user_id: str
    status: SubscriptionStatus
    title: str
    message: str
    end_date: datetime | None = None


def build_notice(
    user_id: str, status: SubscriptionStatus, end_date: datetime | None
) -> SubscriptionNotice | None:
    """Notice for a transition into ``status``, or None if it needs none."""
    match status:
        case SubscriptionStatus.PAST_DUE:
            return SubscriptionNotice(
                user_id=user_id,
                status=status,
                title="Payment Issue",
                message=(
                    "Your subscription payment is past due. "
                    "Please update your payment method."
                ),
                end_date=end_date,
            )
        case SubscriptionStatus.CANCELLED:
            return SubscriptionNotice(
                user_id=user_id,
                status=status,
                title="Subscription Cancelled",
                message="Your subscription will end at the current billing period.",
                end_date=end_date,
            )
        case _:
            return None


class Notifier(ABC):
    """Sink for subscription notices."""

    @abstractmethod
    async def notify(self, notice: SubscriptionNotice) -> None:
        """Deliver one notice."""


class LoggingNotifier(Notifier):
    """Logs notices and keeps the most recent ones per user for the UI to poll."""

    def __init__(self, keep: int = 10) -> None:
        self._recent: dict[str, deque[SubscriptionNotice]] = defaultdict(
            lambda: deque(maxlen=keep)
        )

    async def notify(self, notice: SubscriptionNotice) -> None:
        tier_logger.info(
            f"Notice for {notice.user_id}: {notice.title} ({notice.status.value})"
        )
        self._recent[notice.user_id].append(notice)

    def recent(self, user_id: str) -> list[SubscriptionNotice]:
        return list(self._recent.get(user_id, ()))


__all__ = [
    "LoggingNotifier",
    "Notifier",
    "SubscriptionNotice",
    "build_notice",
]
