"""
In-Memory Status Broker

Process-local fan-out used in development mode and in tests. Messages
are round-tripped through JSON so subscribers see the same shapes the
Redis broker would hand them.
"""

import json
import logging
from collections import defaultdict
from typing import Any

from cafe_orders.services.notifier.base import (
    BaseStatusBroker,
    EventCallback,
    Subscription,
)

logger = logging.getLogger(__name__)


class MemoryStatusBroker(BaseStatusBroker):
    """In-process broker; nothing leaves the current event loop."""

    def __init__(self):
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        logger.info("MemoryStatusBroker initialized")

    @property
    def provider_name(self) -> str:
        return "memory"

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscriptions.get(channel, ()))

    async def publish(self, channel: str, payload: dict[str, Any]) -> int:
        message = json.loads(json.dumps(payload, default=str))
        delivered = 0

        # Copy: callbacks may unsubscribe while we iterate
        for subscription in list(self._subscriptions.get(channel, ())):
            try:
                if await subscription.deliver(message):
                    delivered += 1
            except Exception:
                logger.exception(f"Subscriber on {channel} raised while handling a message")

        logger.debug(f"Published to {channel}: {delivered} subscriber(s)")
        return delivered

    async def subscribe(self, channel: str, callback: EventCallback) -> Subscription:
        subscription = Subscription(channel, callback)
        subscription.add_close_callback(self._remove)
        self._subscriptions[channel].append(subscription)
        logger.debug(f"Subscribed to {channel} ({self.subscriber_count(channel)} total)")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.channel)
        if subscribers and subscription in subscribers:
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscriptions[subscription.channel]

    async def close(self) -> None:
        for subscribers in list(self._subscriptions.values()):
            for subscription in list(subscribers):
                subscription.unsubscribe()
        self._subscriptions.clear()

    async def health_check(self) -> bool:
        return True
