"""
Order Store Factory

Returns the in-memory or SQL order store based on the ORDER_STORE setting.

Usage:
    from quickserve.services.orders import get_order_store

    store = get_order_store()
    orders = await store.query(OrderFilter(location=Site.MEDICAL))
"""

import logging
from functools import lru_cache

from quickserve.core.config import get_settings
from quickserve.database import get_session_maker
from quickserve.services.orders.base import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BaseOrderStore,
    NewOrder,
    OrderFilter,
    OrderLine,
    OrderRecord,
)
from quickserve.services.orders.memory import InMemoryOrderStore
from quickserve.services.orders.sql import SqlOrderStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_order_store() -> BaseOrderStore:
    """Get the configured order store (cached)."""
    settings = get_settings()

    if settings.order_store == "memory":
        logger.info("Order Store: Using InMemoryOrderStore")
        return InMemoryOrderStore()

    logger.info("Order Store: Using SqlOrderStore")
    return SqlOrderStore(get_session_maker())


def reset_order_store() -> None:
    """Clear the cached store instance."""
    get_order_store.cache_clear()


__all__ = [
    "get_order_store",
    "reset_order_store",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "BaseOrderStore",
    "NewOrder",
    "OrderFilter",
    "OrderLine",
    "OrderRecord",
    "InMemoryOrderStore",
    "SqlOrderStore",
]
