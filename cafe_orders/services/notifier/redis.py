"""
Redis Status Broker

Pushes status changes through Redis pub/sub so every API worker sees
them. Each subscription owns one ``PubSub`` connection and one reader
task; unsubscribing cancels the task, which unsubscribes and closes the
connection on its way out.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from cafe_orders.core.config import get_settings
from cafe_orders.services.notifier.base import (
    BaseStatusBroker,
    EventCallback,
    Subscription,
)

logger = logging.getLogger(__name__)


class RedisStatusBroker(BaseStatusBroker):
    """Redis pub/sub implementation of the status broker."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or get_settings().redis_url
        self._client = aioredis.from_url(self.redis_url, decode_responses=True)
        self._readers: dict[Subscription, asyncio.Task] = {}
        logger.info(f"RedisStatusBroker initialized ({self.redis_url})")

    @property
    def provider_name(self) -> str:
        return "redis"

    async def publish(self, channel: str, payload: dict[str, Any]) -> int:
        message = json.dumps(payload, default=str)
        receivers = await self._client.publish(channel, message)
        logger.debug(f"Published to {channel}: {receivers} receiver(s)")
        return receivers

    async def subscribe(self, channel: str, callback: EventCallback) -> Subscription:
        pubsub = self._client.pubsub()
        await pubsub.subscribe(channel)

        subscription = Subscription(channel, callback)
        task = asyncio.create_task(
            self._reader(pubsub, subscription),
            name=f"status-reader:{channel}",
        )
        self._readers[subscription] = task
        subscription.add_close_callback(self._stop_reader)
        return subscription

    def _stop_reader(self, subscription: Subscription) -> None:
        task = self._readers.pop(subscription, None)
        if task is not None and not task.done():
            task.cancel()

    async def _reader(self, pubsub, subscription: Subscription) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    payload = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning(f"Dropping malformed message on {subscription.channel}")
                    continue
                try:
                    await subscription.deliver(payload)
                except Exception:
                    logger.exception(f"Subscriber on {subscription.channel} raised while handling a message")
        except asyncio.CancelledError:
            raise
        except RedisError as e:
            logger.error(f"Redis subscription on {subscription.channel} lost: {e}")
        finally:
            try:
                await pubsub.unsubscribe(subscription.channel)
                await pubsub.aclose()
            except RedisError as e:
                logger.warning(f"Error closing pubsub for {subscription.channel}: {e}")

    async def close(self) -> None:
        subscriptions = list(self._readers)
        tasks = list(self._readers.values())
        for subscription in subscriptions:
            subscription.unsubscribe()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._client.aclose()
        logger.info("RedisStatusBroker closed")

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
