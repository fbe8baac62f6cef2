from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tierkeeper.core.db.models.base import TimestampedModel
from tierkeeper.core.enums import SubscriptionStatus, UserTier


class Profile(TimestampedModel):
    """Cached tier, billing snapshot and usage counters for one user.

    The billing fields mirror the processor's state and are refreshed by
    reconciliation. The usage counters are incremented by feature writes
    elsewhere and only read here.
    """

    __tablename__ = "profiles"

    # Opaque user id issued by the identity provider
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    email: Mapped[str | None] = mapped_column(
        String(320),
        unique=True,
        nullable=True,
        index=True,
    )

    user_tier: Mapped[UserTier] = mapped_column(
        Enum(
            UserTier,
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
            length=32,
        ),
        default=UserTier.FREE,
        nullable=False,
    )

    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(
            SubscriptionStatus,
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
            length=32,
        ),
        default=SubscriptionStatus.INACTIVE,
        nullable=False,
    )

    subscription_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    courses_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    stripe_customer_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    stripe_subscription_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("courses_used >= 0", name="ck_profiles_courses_used"),
        CheckConstraint("tasks_used >= 0", name="ck_profiles_tasks_used"),
        CheckConstraint("notes_used >= 0", name="ck_profiles_notes_used"),
    )

    def __repr__(self) -> str:
        return (
            f"<Profile id={self.id} tier={self.user_tier} "
            f"status={self.subscription_status}>"
        )
