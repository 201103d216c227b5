"""
In-Process Change Feed

Fans events out to subscriptions living in the same process. Enough for
a single API worker; multi-worker deployments use the Redis feed.
"""

import logging

from quickserve.services.sync.base import BaseChangeFeed, ChangeEvent

logger = logging.getLogger(__name__)


class InMemoryChangeFeed(BaseChangeFeed):
    """Change feed without a broker."""

    @property
    def provider_name(self) -> str:
        return "memory"

    async def publish(self, event: ChangeEvent) -> None:
        delivered = self._dispatch(event)
        logger.debug(f"Order #{event.order_id} {event.kind} -> {delivered} subscriber(s)")
