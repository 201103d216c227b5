"""
Order Board

Consumer-side view of a set of orders: a staff screen (one site) or a
client's "my orders" panel (one user). The board keeps the last query
result and re-queries on a refresh signal (push) or on a timer (pull).
Both watchers are scoped: leaving the ``async with`` block tears the
subscription or timer down.

Status changes requested from the board are never shown optimistically:
the displayed record is replaced only with the server's confirmed copy.
"""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, Optional, Union

from quickserve.client.api import QuickServeClient
from quickserve.core.config import get_settings
from quickserve.core.exceptions import InvalidTransitionError, NotFoundError
from quickserve.models import OrderStatus, Site
from quickserve.schemas import OrderResponse
from quickserve.services.lifecycle import next_status, status_rank
from quickserve.services.sync import BaseChangeFeed, OrderPredicate, Poller

logger = logging.getLogger(__name__)


class OrderBoard:
    """
    Live list of orders for one site or one user.

    Args:
        source: API client used for queries and transitions
        location: Restrict to one site (staff view)
        user_id: Restrict to one owner (client view)
        statuses: Restrict to these statuses (e.g. active orders only)
        limit: Maximum number of orders fetched
    """

    def __init__(
        self,
        source: QuickServeClient,
        location: Optional[Union[str, Site]] = None,
        user_id: Optional[str] = None,
        statuses: Iterable[Union[str, OrderStatus]] = (),
        limit: Optional[int] = None,
    ):
        self.source = source
        self.location = Site(location) if location else None
        self.user_id = user_id
        self.statuses = tuple(OrderStatus(s) for s in statuses)
        self.limit = limit
        self.last_refresh: Optional[datetime] = None
        self.refresh_count = 0
        self._orders: list[OrderResponse] = []

    @property
    def orders(self) -> list[OrderResponse]:
        return list(self._orders)

    @property
    def predicate(self) -> OrderPredicate:
        return OrderPredicate(location=self.location, owner_id=self.user_id)

    def get(self, order_id: int) -> OrderResponse:
        for order in self._orders:
            if order.id == order_id:
                return order
        raise NotFoundError("Order not found")

    def counts(self) -> dict[OrderStatus, int]:
        """Orders per status, e.g. for the pending/preparing/ready badges."""
        counter = Counter(o.status for o in self._orders)
        return {status: counter.get(status, 0) for status in OrderStatus}

    def filtered(self, status: Optional[Union[str, OrderStatus]] = None) -> list[OrderResponse]:
        if status is None:
            return self.orders
        status = OrderStatus(status)
        return [o for o in self._orders if o.status == status]

    # -------------------------------------------------------------------------
    # REFRESH
    # -------------------------------------------------------------------------

    async def refresh(self) -> list[OrderResponse]:
        """Re-run the board's query. Safe to call redundantly."""
        fetched = await self.source.list_orders(
            location=self.location,
            user_id=self.user_id,
            status=self.statuses,
            limit=self.limit,
        )
        known = {o.id: o for o in self._orders}
        merged = []
        for order in fetched:
            current = known.get(order.id)
            # A stale read must not move a displayed order backwards
            if current is not None and status_rank(current.status) > status_rank(order.status):
                merged.append(current)
            else:
                merged.append(order)

        self._orders = merged
        self.last_refresh = datetime.now(timezone.utc)
        self.refresh_count += 1
        return self.orders

    @asynccontextmanager
    async def watch_push(self, feed: BaseChangeFeed) -> AsyncIterator["OrderBoard"]:
        """Refresh whenever the change feed signals a matching order."""
        await self.refresh()
        async with feed.subscribe(self.predicate) as subscription:
            task = asyncio.create_task(self._follow(subscription))
            try:
                yield self
            finally:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def _follow(self, subscription) -> None:
        async for _ in subscription:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Board refresh failed; waiting for the next signal")

    def watch_pull(self, interval: Optional[float] = None) -> Poller:
        """Refresh every ``interval`` seconds (default from settings)."""
        if interval is None:
            interval = get_settings().poll_interval_seconds
        return Poller(self.refresh, interval)

    # -------------------------------------------------------------------------
    # STAFF ACTIONS
    # -------------------------------------------------------------------------

    def next_action(self, order_id: int) -> Optional[OrderStatus]:
        """The only status the staff button may offer for this order."""
        return next_status(self.get(order_id).status)

    async def advance(self, order_id: int) -> OrderResponse:
        """
        Request the next status for an order.

        On failure the displayed status is left as it was and the typed
        error propagates so the screen can offer a retry.
        """
        target = self.next_action(order_id)
        if target is None:
            raise InvalidTransitionError(
                f"Order #{order_id} is {self.get(order_id).status.value}; nothing to advance"
            )

        updated = await self.source.advance_order(order_id, target)
        self._orders = [updated if o.id == order_id else o for o in self._orders]
        return updated
