"""
Change Feed Factory

Returns the in-process or Redis change feed based on CHANGE_FEED
(or ENV_MODE when unset).
"""

import logging
from functools import lru_cache

from quickserve.core.config import get_settings
from quickserve.services.sync.base import (
    BaseChangeFeed,
    ChangeEvent,
    OrderPredicate,
    Subscription,
)
from quickserve.services.sync.memory import InMemoryChangeFeed
from quickserve.services.sync.polling import Poller
from quickserve.services.sync.redis_feed import RedisChangeFeed

logger = logging.getLogger(__name__)


@lru_cache()
def get_change_feed() -> BaseChangeFeed:
    """Get the configured change feed (cached)."""
    settings = get_settings()

    if settings.change_feed_backend == "redis":
        logger.info(f"Change Feed: Using RedisChangeFeed ({settings.env_mode.value} mode)")
        return RedisChangeFeed(settings.redis_url, channel=settings.sync_channel)

    logger.info("Change Feed: Using InMemoryChangeFeed")
    return InMemoryChangeFeed()


def reset_change_feed() -> None:
    """Clear the cached feed instance."""
    get_change_feed.cache_clear()


__all__ = [
    "get_change_feed",
    "reset_change_feed",
    "BaseChangeFeed",
    "ChangeEvent",
    "OrderPredicate",
    "Subscription",
    "InMemoryChangeFeed",
    "RedisChangeFeed",
    "Poller",
]
