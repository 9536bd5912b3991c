"""Push of recomputed snapshots to live subscribers.

Each subscription holds a single pending slot. Publishing overwrites an
undelivered snapshot instead of queueing behind it, so a slow consumer only
ever sees the latest state. A failed delivery removes the subscriber; the
client is expected to resubscribe.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from uuid import uuid4

import structlog

from .models import Scope
from .schemas import DashboardSnapshot


logger = structlog.get_logger(__name__)

SendFn = Callable[[DashboardSnapshot], Awaitable[None]]
IdleFn = Callable[[], Awaitable[None]]


class BroadcastDeliveryError(Exception):
    """A snapshot could not be delivered to a subscriber."""

    def __init__(self, subscriber_id: str, cause: BaseException | None = None):
        self.subscriber_id = subscriber_id
        self.cause = cause
        super().__init__(f"Delivery to subscriber {subscriber_id} failed: {cause}")


class Subscription:
    """One subscriber's registration and its coalescing delivery slot."""

    def __init__(self, subscriber_id: str, scope: Scope) -> None:
        self.subscriber_id = subscriber_id
        self.scope = scope
        self._pending: DashboardSnapshot | None = None
        self._ready = asyncio.Event()
        self._closed = False
        self.offered = 0
        self.delivered = 0

    @property
    def pending(self) -> DashboardSnapshot | None:
        return self._pending

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, snapshot: DashboardSnapshot) -> None:
        """Place a snapshot in the slot, replacing an undelivered one."""
        if self._closed:
            return
        self._pending = snapshot
        self.offered += 1
        self._ready.set()

    def take(self) -> DashboardSnapshot | None:
        """Empty the slot without waiting."""
        snapshot, self._pending = self._pending, None
        self._ready.clear()
        return snapshot

    async def next(self, timeout: float | None = None) -> DashboardSnapshot | None:
        """Wait for the next snapshot.

        Returns None when the timeout elapses or the subscription closes.
        """
        if self._pending is None and not self._closed:
            try:
                await asyncio.wait_for(self._ready.wait(), timeout)
            except TimeoutError:
                return None
        if self._closed:
            return None
        snapshot = self.take()
        if snapshot is not None:
            self.delivered += 1
        return snapshot

    def close(self) -> None:
        self._closed = True
        self._pending = None
        # Wake a waiting consumer so it can observe the close
        self._ready.set()


class UpdateBroadcaster:
    """Registry of subscribers keyed by subscriber id, one scope each."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(self, scope: Scope, subscriber_id: str | None = None) -> Subscription:
        subscriber_id = subscriber_id or uuid4().hex
        existing = self._subscriptions.get(subscriber_id)
        if existing is not None:
            existing.close()
        subscription = Subscription(subscriber_id, scope)
        self._subscriptions[subscriber_id] = subscription
        logger.info("subscriber_registered", subscriber_id=subscriber_id, scope=scope.key)
        return subscription

    def unsubscribe(self, subscriber_id: str) -> bool:
        subscription = self._subscriptions.pop(subscriber_id, None)
        if subscription is None:
            return False
        subscription.close()
        logger.info(
            "subscriber_removed",
            subscriber_id=subscriber_id,
            scope=subscription.scope.key,
        )
        return True

    def subscribers(self, scope: Scope) -> list[Subscription]:
        return [s for s in self._subscriptions.values() if s.scope == scope]

    def has_subscribers(self, scope: Scope) -> bool:
        return any(s.scope == scope for s in self._subscriptions.values())

    def subscribed_scopes(self) -> set[Scope]:
        return {s.scope for s in self._subscriptions.values()}

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def publish(self, scope: Scope, snapshot: DashboardSnapshot) -> int:
        """Offer a snapshot to every subscriber of the scope.

        Returns:
            Number of subscribers the snapshot was offered to
        """
        targets = self.subscribers(scope)
        for subscription in targets:
            subscription.offer(snapshot)
        if targets:
            logger.debug("snapshot_published", scope=scope.key, subscribers=len(targets))
        return len(targets)

    async def serve(
        self,
        subscription: Subscription,
        send: SendFn,
        *,
        idle_timeout: float | None = None,
        on_idle: IdleFn | None = None,
    ) -> bool:
        """Deliver snapshots until the subscription closes or a send fails.

        When ``idle_timeout`` elapses with nothing to deliver, ``on_idle`` is
        called; a failure there drops the subscriber like a failed send.

        Returns:
            False if the subscriber was dropped
        """
        try:
            while not subscription.closed:
                snapshot = await subscription.next(timeout=idle_timeout)
                if snapshot is not None:
                    await self._send(subscription, send, snapshot)
                elif on_idle is not None and not subscription.closed:
                    await self._send(subscription, on_idle)
        except BroadcastDeliveryError as e:
            self._drop(subscription, e)
            return False
        return True

    # ==========================================================================
    # Internals
    # ==========================================================================

    @staticmethod
    async def _send(
        subscription: Subscription, send: Callable[..., Awaitable[None]], *args: object
    ) -> None:
        try:
            await send(*args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise BroadcastDeliveryError(subscription.subscriber_id, e) from e

    def _drop(self, subscription: Subscription, error: BroadcastDeliveryError) -> None:
        logger.warning(
            "subscriber_dropped",
            subscriber_id=subscription.subscriber_id,
            scope=subscription.scope.key,
            error=str(error.cause),
        )
        # Only remove the registration this subscription still owns
        if self._subscriptions.get(subscription.subscriber_id) is subscription:
            self.unsubscribe(subscription.subscriber_id)
        else:
            subscription.close()
