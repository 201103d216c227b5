"""
                        Services Module

Business logic behind the API. Backends follow the strategy pattern:
each capability has an interface plus interchangeable implementations,
picked by configuration through a cached factory.

Services:
    - orders: order persistence (in-memory / SQL)
    - sync: change feed (in-process / Redis) and polling
    - lifecycle: order state machine
"""

from quickserve.services.lifecycle import (
    OrderLifecycleEngine,
    get_order_engine,
    reset_order_engine,
)

__all__ = ["OrderLifecycleEngine", "get_order_engine", "reset_order_engine"]
