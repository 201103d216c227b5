"""
In-Memory Order Store

Keeps orders in a process-local dict. Used for development runs and as
the reference backend in tests. A ``failure_rate`` can be set to simulate
an unreachable store.
"""

import asyncio
import logging
import random
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from quickserve.core.exceptions import ConflictError, NotFoundError, StoreError
from quickserve.models import OrderStatus, Site
from quickserve.services.orders.base import (
    ACTIVE_STATUSES,
    BaseOrderStore,
    NewOrder,
    OrderFilter,
    OrderRecord,
)

logger = logging.getLogger(__name__)


class InMemoryOrderStore(BaseOrderStore):
    """Process-local order store."""

    def __init__(self, failure_rate: float = 0.0, seed: Iterable[OrderRecord] = ()):
        self.failure_rate = failure_rate
        self._orders: dict[int, OrderRecord] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()
        for record in seed:
            self._orders[record.id] = record
            self._next_id = max(self._next_id, record.id + 1)
        logger.info(f"InMemoryOrderStore initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "memory"

    def _check_available(self) -> None:
        if self.failure_rate and random.random() < self.failure_rate:
            logger.warning("Memory store failure (simulated)")
            raise StoreError("Order store unavailable (simulated)")

    async def create(self, draft: NewOrder) -> OrderRecord:
        self._check_available()
        async with self._lock:
            record = OrderRecord(
                id=self._next_id,
                token=draft.token,
                location=draft.location,
                items=tuple(draft.items),
                total=draft.total,
                status=draft.status,
                client_name=draft.client_name,
                client_phone=draft.client_phone,
                table_number=draft.table_number,
                owner_id=draft.owner_id,
                created_at=draft.created_at,
                updated_at=draft.updated_at,
            )
            self._orders[record.id] = record
            self._next_id += 1
        return replace(record)

    async def get(self, order_id: int) -> Optional[OrderRecord]:
        self._check_available()
        record = self._orders.get(order_id)
        return replace(record) if record else None

    async def update_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new_status: OrderStatus,
        updated_at: datetime,
    ) -> OrderRecord:
        self._check_available()
        async with self._lock:
            record = self._orders.get(order_id)
            if record is None:
                raise NotFoundError("Order not found")
            if record.status != expected:
                raise ConflictError(
                    f"Order #{order_id} is {record.status.value}, expected {expected.value}"
                )
            updated = replace(record, status=new_status, updated_at=updated_at)
            self._orders[order_id] = updated
        return replace(updated)

    async def query(self, order_filter: OrderFilter) -> list[OrderRecord]:
        self._check_available()
        # dict preserves insertion order and sorted() is stable
        matches = [o for o in self._orders.values() if order_filter.matches(o)]
        matches.sort(key=lambda o: o.created_at, reverse=True)
        if order_filter.limit is not None:
            matches = matches[:order_filter.limit]
        return [replace(o) for o in matches]

    async def find_active_by_token(self, location: Site, token: str) -> Optional[OrderRecord]:
        orders = await self.query(OrderFilter(location=location, statuses=ACTIVE_STATUSES))
        return next((o for o in orders if o.token == token), None)

    async def find_by_token(self, token: str, location: Optional[Site] = None) -> Optional[OrderRecord]:
        orders = await self.query(OrderFilter(location=location))
        return next((o for o in orders if o.token == token), None)

    async def health_check(self) -> bool:
        return True
