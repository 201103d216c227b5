"""
Order Lifecycle Engine

Owns the order state machine:

    pending -> preparing -> ready -> completed

Clients create orders; staff advance them one step at a time. The engine
re-checks every requested transition against the pipeline, whatever the
caller's UI offered, and writes through a conditional store update so a
concurrent advance surfaces as a ConflictError instead of a lost write.
``cancelled`` is only reachable through the administrative ``cancel``.
"""

import logging
import random
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Iterable, Optional, Union

from quickserve.core.config import get_settings
from quickserve.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from quickserve.models import OrderStatus, Site
from quickserve.services.orders import (
    ACTIVE_STATUSES,
    BaseOrderStore,
    NewOrder,
    OrderFilter,
    OrderLine,
    OrderRecord,
    get_order_store,
)
from quickserve.services.sync import BaseChangeFeed, ChangeEvent, get_change_feed

logger = logging.getLogger(__name__)


# =============================================================================
# STATUS PIPELINE
# =============================================================================

PIPELINE = (
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
)

SITE_PREFIXES = {
    Site.MEDICAL: "MED",
    Site.BITBITES: "BIT",
}


def next_status(status: OrderStatus) -> Optional[OrderStatus]:
    """The single legal successor of ``status``, or None for terminal states."""
    if status not in PIPELINE:
        return None
    index = PIPELINE.index(status)
    return PIPELINE[index + 1] if index + 1 < len(PIPELINE) else None


def status_rank(status: OrderStatus) -> int:
    """Position in the pipeline; cancelled ranks after completed."""
    if status == OrderStatus.CANCELLED:
        return len(PIPELINE)
    return PIPELINE.index(status)


def generate_token(location: Site, rng: Optional[random.Random] = None) -> str:
    """Pickup token such as ``MED-427``; the prefix depends only on the site."""
    rng = rng or random
    return f"{SITE_PREFIXES[location]}-{rng.randint(100, 999)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        valid = [s.value for s in OrderStatus]
        raise InvalidTransitionError(f"Unknown status '{value}'. Options: {valid}")


def _parse_site(value: Union[str, Site]) -> Site:
    try:
        return Site(value)
    except ValueError:
        valid = [s.value for s in Site]
        raise ValidationError(f"Unknown location '{value}'. Options: {valid}")


# =============================================================================
# ENGINE
# =============================================================================

class OrderLifecycleEngine:
    """
    Creates, advances and queries orders.

    Args:
        store: Order persistence backend
        feed: Change feed notified after every successful write
        token_max_attempts: Token draws before a collision is accepted
        clock: Source of timestamps
        rng: Random source for tokens
    """

    def __init__(
        self,
        store: BaseOrderStore,
        feed: Optional[BaseChangeFeed] = None,
        token_max_attempts: int = 5,
        clock: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.feed = feed
        self.token_max_attempts = max(1, token_max_attempts)
        self.clock = clock
        self.rng = rng or random.Random()

    # -------------------------------------------------------------------------
    # CREATE
    # -------------------------------------------------------------------------

    async def create(
        self,
        lines: Iterable[OrderLine],
        location: Union[str, Site],
        client_name: str,
        client_phone: Optional[str] = None,
        table_number: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> OrderRecord:
        """
        Validate and persist a new pending order.

        Raises:
            ValidationError: Empty cart, bad quantity/price or blank name
            StoreError: The order could not be saved
        """
        lines = tuple(lines)
        site = _parse_site(location)
        name = (client_name or "").strip()

        if not lines:
            raise ValidationError("An order needs at least one item")
        for line in lines:
            if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity < 1:
                raise ValidationError(f"Invalid quantity {line.quantity!r} for {line.name}")
            if line.price < 0:
                raise ValidationError(f"Invalid price {line.price!r} for {line.name}")
        if not name:
            raise ValidationError("Client name is required")

        total = round(sum(line.line_total for line in lines), 2)
        token = await self._issue_token(site)
        now = self.clock()

        order = await self.store.create(NewOrder(
            token=token,
            location=site,
            items=lines,
            total=total,
            status=OrderStatus.PENDING,
            client_name=name,
            client_phone=(client_phone or "").strip() or None,
            table_number=(table_number or "").strip() or None,
            owner_id=owner_id or None,
            created_at=now,
            updated_at=now,
        ))

        logger.info(f"Order #{order.id} created: {order.token} for {order.client_name} (total {order.total:.2f})")
        await self._publish("created", order)
        return order

    async def _issue_token(self, location: Site) -> str:
        token = generate_token(location, self.rng)
        for _ in range(self.token_max_attempts - 1):
            if await self.store.find_active_by_token(location, token) is None:
                return token
            token = generate_token(location, self.rng)
        if await self.store.find_active_by_token(location, token) is not None:
            logger.warning(f"Token {token} already held by an active order at {location.value}")
        return token

    # -------------------------------------------------------------------------
    # TRANSITIONS
    # -------------------------------------------------------------------------

    async def advance(self, order_id: int, requested: Union[str, OrderStatus]) -> OrderRecord:
        """
        Move an order to the next pipeline status.

        Raises:
            NotFoundError: Unknown order id
            InvalidTransitionError: ``requested`` is not the immediate successor
            ConflictError: Another actor changed the status concurrently
            StoreError: The update could not be saved
        """
        target = _parse_status(requested)
        order = await self.get(order_id)

        expected = next_status(order.status)
        if target != expected:
            allowed = expected.value if expected else "none (terminal)"
            logger.warning(
                f"Rejected transition for order #{order_id}: "
                f"{order.status.value} -> {target.value} (allowed: {allowed})"
            )
            raise InvalidTransitionError(
                f"Cannot move order #{order_id} from {order.status.value} to {target.value}"
            )

        updated = await self.store.update_status(order_id, order.status, target, self.clock())
        logger.info(f"Order #{order_id} ({updated.token}): {order.status.value} -> {target.value}")
        await self._publish("updated", updated)
        return updated

    async def cancel(self, order_id: int) -> OrderRecord:
        """
        Administrative override: cancel an order that is not yet terminal.

        Raises:
            NotFoundError: Unknown order id
            InvalidTransitionError: Order already completed or cancelled
            ConflictError: Another actor changed the status concurrently
        """
        order = await self.get(order_id)
        if order.status not in ACTIVE_STATUSES:
            raise InvalidTransitionError(
                f"Cannot cancel order #{order_id}: it is already {order.status.value}"
            )

        updated = await self.store.update_status(
            order_id, order.status, OrderStatus.CANCELLED, self.clock()
        )
        logger.info(f"Order #{order_id} ({updated.token}) cancelled from {order.status.value}")
        await self._publish("updated", updated)
        return updated

    # -------------------------------------------------------------------------
    # QUERIES
    # -------------------------------------------------------------------------

    async def get(self, order_id: int) -> OrderRecord:
        order = await self.store.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    async def query(self, order_filter: Optional[OrderFilter] = None) -> list[OrderRecord]:
        """Orders matching the filter, most recently created first."""
        return await self.store.query(order_filter or OrderFilter())

    async def find_by_token(self, token: str, location: Optional[Union[str, Site]] = None) -> OrderRecord:
        site = _parse_site(location) if location else None
        order = await self.store.find_by_token(token.strip().upper(), site)
        if order is None:
            raise NotFoundError(f"No order with token {token}")
        return order

    # -------------------------------------------------------------------------
    # SYNCHRONIZATION
    # -------------------------------------------------------------------------

    async def _publish(self, kind: str, order: OrderRecord) -> None:
        if self.feed is None:
            return
        event = ChangeEvent(
            kind=kind,
            order_id=order.id,
            location=order.location,
            owner_id=order.owner_id,
            status=order.status,
            occurred_at=order.updated_at,
        )
        try:
            await self.feed.publish(event)
        except Exception:
            # The write already succeeded; pull-mode consumers still converge
            logger.exception(f"Failed to publish {kind} event for order #{order.id}")


@lru_cache()
def get_order_engine() -> OrderLifecycleEngine:
    """Get the engine wired to the configured store and change feed (cached)."""
    settings = get_settings()
    return OrderLifecycleEngine(
        store=get_order_store(),
        feed=get_change_feed(),
        token_max_attempts=settings.token_max_attempts,
    )


def reset_order_engine() -> None:
    """Clear the cached engine instance."""
    get_order_engine.cache_clear()
