"""
Redis Pub/Sub Change Feed

Every API worker publishes order changes on one Redis channel and runs a
listener that fans incoming events out to its own local subscriptions,
so a staff screen connected to worker A hears about an order advanced on
worker B.

Note: Redis pub/sub is fire-and-forget. Events published while a worker
is disconnected are lost; pull-mode polling covers that gap.
"""

import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from quickserve.core.exceptions import StoreError
from quickserve.services.sync.base import BaseChangeFeed, ChangeEvent

logger = logging.getLogger(__name__)


class RedisChangeFeed(BaseChangeFeed):
    """
    Change feed backed by a Redis channel.

    Args:
        redis_url: Connection URL, used when no client is given
        channel: Pub/sub channel carrying change events
        client: Pre-built async Redis client (e.g. a fake in tests)
        reconnect_delay: Seconds to wait before resubscribing after a lost connection
    """

    def __init__(
        self,
        redis_url: Optional[str],
        channel: str = "order_events",
        client: Optional[aioredis.Redis] = None,
        reconnect_delay: float = 1.0,
    ):
        super().__init__()
        self.redis_url = redis_url
        self.channel = channel
        self.reconnect_delay = reconnect_delay
        self.reconnects = 0
        self._client = client
        self._redis: Optional[aioredis.Redis] = None
        self._listener: Optional[asyncio.Task] = None

    @property
    def provider_name(self) -> str:
        return "redis"

    async def start(self) -> None:
        if self._redis is not None:
            return
        self._redis = self._client or aioredis.from_url(self.redis_url, decode_responses=True)
        pubsub = await self._open_pubsub()
        self._listener = asyncio.create_task(self._listen(pubsub))
        logger.info(f"Subscribed to {self.channel} channel")

    async def stop(self) -> None:
        await super().stop()
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Change feed listener had failed")
            self._listener = None
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            finally:
                self._redis = None

    async def _open_pubsub(self):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel)
        return pubsub

    async def _close_pubsub(self, pubsub) -> None:
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
        except RedisError as e:
            logger.debug(f"Ignoring error while closing pubsub: {e}")

    async def _listen(self, pubsub) -> None:
        try:
            while True:
                try:
                    if pubsub is None:
                        pubsub = await self._open_pubsub()
                        logger.info(f"Resubscribed to {self.channel} channel")
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0
                    )
                except RedisError as e:
                    # Events published while disconnected are lost; pollers cover the gap
                    self.reconnects += 1
                    logger.warning(
                        f"Change feed lost Redis ({e}); resubscribing in {self.reconnect_delay}s"
                    )
                    await self._close_pubsub(pubsub)
                    pubsub = None
                    await asyncio.sleep(self.reconnect_delay)
                    continue

                if message is None or message["type"] != "message":
                    continue
                try:
                    event = ChangeEvent.from_dict(json.loads(message["data"]))
                except (ValueError, KeyError, TypeError):
                    logger.warning(f"Dropping malformed change event: {message['data']!r}")
                    continue
                self._dispatch(event)
        finally:
            await self._close_pubsub(pubsub)

    @property
    def listening(self) -> bool:
        return self._listener is not None and not self._listener.done()

    async def publish(self, event: ChangeEvent) -> None:
        if self._redis is None:
            await self.start()
        try:
            await self._redis.publish(self.channel, json.dumps(event.to_dict()))
        except RedisError as e:
            raise StoreError(f"Could not publish order change: {e}") from e

    async def health_check(self) -> bool:
        if self._redis is None or not self.listening:
            return False
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
