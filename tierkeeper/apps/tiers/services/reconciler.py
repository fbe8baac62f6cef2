"""
Tier reconciliation.

Refreshes a user's cached snapshot from the billing processor and publishes
the normalized result to dependents. The processor always outranks the
cache; the cache is only served when the processor cannot be reached.

Fallback order on a refresh:
    processor -> profile cache (possibly stale) -> default snapshot

A refresh always resolves to a snapshot. Processor and store failures are
logged, never raised. A default the store never saw carries
``usage_unknown`` so quota checks do not trust its zero counters.
"""

import asyncio
import inspect
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from tierkeeper.apps.tiers.schemas.tier import TierSnapshot, TierState
from tierkeeper.apps.tiers.services.billing_processor import (
    BillingProcessor,
    ProcessorStatus,
)
from tierkeeper.apps.tiers.services.notifier import Notifier, build_notice
from tierkeeper.apps.tiers.services.profile_cache import ProfileCache
from tierkeeper.core.config import tier_logger
from tierkeeper.core.enums import RefreshTrigger, SubscriptionStatus, UserTier
from tierkeeper.core.exceptions.types import (
    BillingProcessorException,
    ConflictException,
    StoreUnavailableException,
)
from tierkeeper.core.utils import parse_iso_datetime

E = TypeVar("E", bound=Enum)

Subscriber = Callable[[TierState], Awaitable[None] | None]
ScheduleRefreshJob = Callable[[str, str], Any]
RemoveRefreshJob = Callable[[str], Any]

_PROCESSOR_ERRORS = (BillingProcessorException,)
_STORE_ERRORS = (StoreUnavailableException, ConflictException)


def _coerce(enum_cls: type[E], value: str | None, default: E) -> E:
    if value is None:
        return default
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        tier_logger.warning(
            f"Unknown {enum_cls.__name__} '{value}', using '{default.value}'"
        )
        return default


def normalize_status(status: ProcessorStatus) -> dict[str, Any]:
    """Processor status as snapshot fields.

    Unknown or missing tiers become free, unknown statuses inactive, and the
    ISO period end is parsed into an aware datetime.
    """
    return {
        "tier": _coerce(UserTier, status.tier, UserTier.FREE),
        "subscription_status": _coerce(
            SubscriptionStatus, status.status, SubscriptionStatus.INACTIVE
        ),
        "subscription_end_date": parse_iso_datetime(status.period_end_iso),
    }


class SnapshotPublisher:
    """Per-user emitter of published tier states.

    Callbacks may be plain functions or coroutine functions. A failing
    callback is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, user_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback and return a function that removes it."""
        self._subscribers[user_id].append(callback)
        return lambda: self.unsubscribe(user_id, callback)

    def unsubscribe(self, user_id: str, callback: Subscriber) -> None:
        callbacks = self._subscribers.get(user_id)
        if not callbacks:
            return
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            self._subscribers.pop(user_id, None)

    def drop(self, user_id: str) -> None:
        self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    async def publish(self, user_id: str, state: TierState) -> None:
        for callback in list(self._subscribers.get(user_id, ())):
            try:
                result = callback(state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                tier_logger.exception(
                    f"Tier subscriber for {user_id} failed: {type(e).__name__}: {e}"
                )


class TierReconciler:
    """Keeps each user's tier snapshot in step with the billing processor.

    Per-user state:
        - the published ``TierState`` (only while a session is open)
        - an issuance counter; results older than the last published one
          are discarded
        - the open session's contact address
        - the last status a notice was judged against
    """

    def __init__(
        self,
        processor: BillingProcessor,
        cache: ProfileCache,
        notifier: Notifier,
        publisher: SnapshotPublisher | None = None,
        schedule_refresh_job: ScheduleRefreshJob | None = None,
        remove_refresh_job: RemoveRefreshJob | None = None,
    ):
        self._processor = processor
        self._cache = cache
        self._notifier = notifier
        self.publisher = publisher or SnapshotPublisher()
        self._schedule_refresh_job = schedule_refresh_job
        self._remove_refresh_job = remove_refresh_job

        self._sessions: dict[str, str] = {}
        self._states: dict[str, TierState] = {}
        self._issued: dict[str, int] = defaultdict(int)
        self._published: dict[str, int] = {}
        self._last_status: dict[str, SubscriptionStatus] = {}
        self._tasks: set[asyncio.Task] = set()

    # Queries

    def current(self, user_id: str) -> TierState | None:
        """The published state, or None if nothing is published for the user."""
        return self._states.get(user_id)

    def has_session(self, user_id: str) -> bool:
        return user_id in self._sessions

    async def snapshot_for(self, user_id: str, email: str) -> TierState:
        state = self.current(user_id)
        if state is not None:
            return state
        return await self.read_through(user_id, email)

    # Sessions

    async def open_session(self, user_id: str, email: str) -> TierState:
        """Register a user, start the interval refresh and run the app-start refresh."""
        self._sessions[user_id] = email
        previous = self._states.get(user_id)
        loading = TierState(
            snapshot=previous.snapshot if previous else None,
            loading=True,
            usage_unknown=previous.usage_unknown if previous else False,
            sequence=previous.sequence if previous else 0,
        )
        self._states[user_id] = loading
        await self.publisher.publish(user_id, loading)

        if self._schedule_refresh_job is not None:
            self._schedule_refresh_job(user_id, email)

        tier_logger.info(f"Tier session opened for {user_id}")
        return await self.refresh(user_id, email, trigger=RefreshTrigger.APP_START)

    def close_session(self, user_id: str) -> bool:
        """Drop the user's in-memory state and subscribers.

        Refreshes still in flight keep writing the cache but no longer publish.
        """
        was_open = self._sessions.pop(user_id, None) is not None
        self._states.pop(user_id, None)
        self._published.pop(user_id, None)
        self._last_status.pop(user_id, None)
        self.publisher.drop(user_id)
        if self._remove_refresh_job is not None:
            self._remove_refresh_job(user_id)
        if was_open:
            tier_logger.info(f"Tier session closed for {user_id}")
        return was_open

    # Refresh

    def schedule_refresh(
        self,
        user_id: str,
        email: str,
        trigger: RefreshTrigger = RefreshTrigger.EXPLICIT,
    ) -> asyncio.Task:
        """Run a refresh in the background and return its task."""
        task = asyncio.create_task(self.refresh(user_id, email, trigger=trigger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def refresh(
        self,
        user_id: str,
        email: str,
        *,
        trigger: RefreshTrigger = RefreshTrigger.EXPLICIT,
    ) -> TierState:
        """Fetch the processor status, write it through and publish it.

        Returns the state this refresh produced, or the newer published state
        when this result arrived after a later refresh had already published.
        """
        self._issued[user_id] += 1
        sequence = self._issued[user_id]
        tier_logger.info(
            f"Refreshing tier for {user_id} (trigger={trigger.value}, seq={sequence})"
        )

        try:
            status = await self._processor.get_status_for_contact(email)
        except _PROCESSOR_ERRORS as e:
            tier_logger.warning(
                f"Status check failed for {user_id}, serving cache: "
                f"{type(e).__name__}: {e}"
            )
            state = await self._from_cache(user_id, email, sequence)
            return await self._publish(user_id, state)

        fields = normalize_status(status)
        previous = await self._previous_status(user_id)
        state = await self._write_status(user_id, email, status, fields, sequence)

        if self._is_stale(user_id, sequence):
            tier_logger.info(
                f"Discarding tier result seq={sequence} for {user_id}, "
                f"seq={self._published[user_id]} already published"
            )
            return self._states.get(user_id, state)

        current = fields["subscription_status"]
        # No await between reading and recording the last notified status
        previous = self._last_status.get(user_id, previous)
        self._last_status[user_id] = current
        await self._notify_transition(
            user_id, previous, current, fields["subscription_end_date"]
        )
        return await self._publish(user_id, state)

    async def read_through(self, user_id: str, email: str) -> TierState:
        """Serve the cached snapshot, creating and repairing it as needed.

        Nothing is published.
        """
        sequence = self._issued[user_id]
        try:
            snapshot = await self._cache.read(user_id)
            if snapshot is None:
                snapshot = await self._cache.ensure(user_id, email)
        except _STORE_ERRORS as e:
            tier_logger.error(f"Cache read failed for {user_id}: {type(e).__name__}")
            return self._last_known(user_id, sequence)

        snapshot = await self._repair(user_id, email, snapshot)
        return TierState(snapshot=snapshot, sequence=sequence)

    async def aclose(self) -> None:
        """Cancel background refreshes and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # Internals

    async def _write_status(
        self,
        user_id: str,
        email: str,
        status: ProcessorStatus,
        fields: dict[str, Any],
        sequence: int,
    ) -> TierState:
        updates = dict(fields)
        if status.customer_id:
            updates["billing_customer_id"] = status.customer_id
        if status.subscription_id:
            updates["billing_subscription_id"] = status.subscription_id

        try:
            stored = await self._cache.write(user_id, updates, email=email)
        except _STORE_ERRORS as e:
            tier_logger.error(
                f"Tier for {user_id} not written to cache: {type(e).__name__}"
            )
            previous = self._states.get(user_id)
            known = previous is not None and previous.snapshot is not None
            base = previous.snapshot if known else TierSnapshot.default()
            return TierState(
                snapshot=base.model_copy(update=fields),
                possibly_stale=True,
                usage_unknown=not known or previous.usage_unknown,
                sequence=sequence,
            )

        tier_logger.info(
            f"Tier for {user_id}: tier={stored.tier.value} "
            f"status={stored.subscription_status.value}"
        )
        return TierState(snapshot=stored, sequence=sequence)

    async def _from_cache(self, user_id: str, email: str, sequence: int) -> TierState:
        try:
            cached = await self._cache.read(user_id)
            if cached is None:
                default = await self._cache.ensure(user_id, email)
                tier_logger.info(f"Persisted default snapshot for {user_id}")
                return TierState(snapshot=default, possibly_stale=True, sequence=sequence)
        except _STORE_ERRORS as e:
            tier_logger.error(f"Cache fallback failed for {user_id}: {type(e).__name__}")
            return self._last_known(user_id, sequence)

        repaired = await self._repair(user_id, email, cached)
        return TierState(snapshot=repaired, possibly_stale=True, sequence=sequence)

    def _last_known(self, user_id: str, sequence: int) -> TierState:
        """Last in-memory snapshot, else an unpersisted default. Both stale.

        The default's counters were never read, so it is marked ``usage_unknown``.
        """
        previous = self._states.get(user_id)
        if previous is not None and previous.snapshot is not None:
            return TierState(
                snapshot=previous.snapshot,
                possibly_stale=True,
                usage_unknown=previous.usage_unknown,
                sequence=sequence,
            )
        return TierState(
            snapshot=TierSnapshot.default(),
            possibly_stale=True,
            usage_unknown=True,
            sequence=sequence,
        )

    async def _repair(
        self, user_id: str, email: str, snapshot: TierSnapshot
    ) -> TierSnapshot:
        """Backfill a missing end date on a paid tier with one extra status fetch.

        Only ``subscription_end_date`` is written. A failed fetch or one
        without a date leaves the snapshot as it is.
        """
        if not snapshot.needs_end_date_repair:
            return snapshot

        tier_logger.info(f"Repairing missing end date for {user_id}")
        try:
            status = await self._processor.get_status_for_contact(email)
        except _PROCESSOR_ERRORS as e:
            tier_logger.warning(f"Repair fetch failed for {user_id}: {type(e).__name__}")
            return snapshot

        end_date = parse_iso_datetime(status.period_end_iso)
        if end_date is None:
            tier_logger.warning(f"Repair fetch for {user_id} returned no end date")
            return snapshot

        try:
            return await self._cache.write(
                user_id, {"subscription_end_date": end_date}, email=email
            )
        except _STORE_ERRORS as e:
            tier_logger.error(f"Repaired end date for {user_id} not written: {type(e).__name__}")
            return snapshot.model_copy(update={"subscription_end_date": end_date})

    async def _previous_status(self, user_id: str) -> SubscriptionStatus | None:
        state = self._states.get(user_id)
        if state is not None and state.snapshot is not None:
            return state.snapshot.subscription_status
        try:
            cached = await self._cache.read(user_id)
        except _STORE_ERRORS:
            return None
        return cached.subscription_status if cached else None

    async def _notify_transition(
        self,
        user_id: str,
        previous: SubscriptionStatus | None,
        current: SubscriptionStatus,
        end_date: datetime | None,
    ) -> None:
        if previous == current:
            return
        notice = build_notice(user_id, current, end_date)
        if notice is None:
            return
        try:
            await self._notifier.notify(notice)
        except Exception as e:
            tier_logger.exception(
                f"Notice for {user_id} not delivered: {type(e).__name__}: {e}"
            )

    def _is_stale(self, user_id: str, sequence: int) -> bool:
        return sequence < self._published.get(user_id, 0)

    async def _publish(self, user_id: str, state: TierState) -> TierState:
        if self._is_stale(user_id, state.sequence):
            return self._states.get(user_id, state)
        if user_id not in self._sessions:
            return state
        self._published[user_id] = state.sequence
        self._states[user_id] = state
        await self.publisher.publish(user_id, state)
        return state


__all__ = [
    "SnapshotPublisher",
    "Subscriber",
    "TierReconciler",
    "normalize_status",
]
