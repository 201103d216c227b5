"""
Change Feed Abstract Base Class

Push-mode synchronization: a consumer subscribes with a predicate
(``location = L`` or ``owner_id = U``) and receives a refresh signal
whenever an order matching it is created or updated. The feed never
ships the diff; consumers re-query.

Delivery is at-least-once and signals coalesce: a consumer busy with a
refresh sees at most one pending signal afterwards, never a backlog.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from quickserve.models import OrderStatus, Site

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """
    A create or update of one order.

    Attributes:
        kind: "created" or "updated"
        order_id: Id of the changed order
        location: Site of the order
        owner_id: Owning identity, if any
        status: Status after the change
        occurred_at: When the change was written
    """
    kind: str
    order_id: int
    location: Site
    status: OrderStatus
    owner_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind,
            "order_id": self.order_id,
            "location": self.location.value,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeEvent":
        return cls(
            kind=data["kind"],
            order_id=int(data["order_id"]),
            location=Site(data["location"]),
            owner_id=data.get("owner_id"),
            status=OrderStatus(data["status"]),
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
        )


@dataclass(frozen=True)
class OrderPredicate:
    """Scope of a subscription. An empty predicate matches every order."""
    location: Optional[Site] = None
    owner_id: Optional[str] = None

    def matches(self, event: ChangeEvent) -> bool:
        if self.location is not None and event.location != self.location:
            return False
        if self.owner_id is not None and event.owner_id != self.owner_id:
            return False
        return True


class Subscription:
    """
    Refresh signal channel for one consumer.

    Iterate it (``async for event in subscription``) or call ``wait()``.
    The yielded event is the latest matching change, only meant as a hint.
    """

    def __init__(self, predicate: OrderPredicate):
        self.predicate = predicate
        self._signal = asyncio.Event()
        self._latest: Optional[ChangeEvent] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        self._latest = event
        self._signal.set()

    async def wait(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """
        Wait for the next refresh signal.

        Returns:
            The latest change, or None on timeout or once closed
        """
        if self._closed:
            return None
        try:
            await asyncio.wait_for(self._signal.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        self._signal.clear()
        if self._closed:
            return None
        event, self._latest = self._latest, None
        return event

    def close(self) -> None:
        self._closed = True
        self._signal.set()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.wait()
        if event is None:
            raise StopAsyncIteration
        return event


class BaseChangeFeed(ABC):
    """
    Abstract base class for change feeds.

    Subclasses decide how an event travels (in-process or through a
    broker); local fan-out to subscriptions is shared.
    """

    def __init__(self):
        self._subscriptions: set[Subscription] = set()

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        """Announce a change to every matching subscriber."""
        pass

    async def start(self) -> None:
        """Acquire connections (called on application startup)."""

    async def stop(self) -> None:
        """Release connections and close every open subscription."""
        for subscription in list(self._subscriptions):
            subscription.close()
        self._subscriptions.clear()

    async def health_check(self) -> bool:
        return True

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _dispatch(self, event: ChangeEvent) -> int:
        """Signal every local subscription whose predicate matches."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.predicate.matches(event):
                subscription.notify(event)
                delivered += 1
        return delivered

    @asynccontextmanager
    async def subscribe(self, predicate: OrderPredicate) -> AsyncIterator[Subscription]:
        """
        Scoped subscription: registered on entry, always removed on exit.

        Example:
            >>> async with feed.subscribe(OrderPredicate(location=Site.MEDICAL)) as sub:
            ...     async for _ in sub:
            ...         await view.refresh()
        """
        subscription = Subscription(predicate)
        self._subscriptions.add(subscription)
        logger.debug(f"Subscribed {predicate} ({len(self._subscriptions)} active)")
        try:
            yield subscription
        finally:
            subscription.close()
            self._subscriptions.discard(subscription)
            logger.debug(f"Unsubscribed {predicate} ({len(self._subscriptions)} active)")
