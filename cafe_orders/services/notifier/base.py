"""
Status Broker Abstract Base Class

Defines the publish/subscribe contract used to push order and shop
status changes to live viewers. Both the in-memory broker (development)
and the Redis broker (staging/production) implement it.

Channels:
    - orders:<order_number>: one order, for the customer tracking feed
    - orders:all: every order, for the staff dashboard
    - shop:status: the shop open/closed singleton
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

ALL_ORDERS_CHANNEL = "orders:all"
SHOP_STATUS_CHANNEL = "shop:status"

EventCallback = Callable[[dict], Union[Awaitable[None], None]]


def order_channel(order_number: int) -> str:
    return f"orders:{order_number}"


class Subscription:
    """
    Handle returned by ``subscribe``.

    Once ``unsubscribe()`` has run, ``deliver()`` never invokes the
    callback again, even for a message that was already in flight.
    """

    def __init__(self, channel: str, callback: EventCallback):
        self.channel = channel
        self._callback = callback
        self._active = True
        self._close_callbacks: list[Callable[["Subscription"], None]] = []

    @property
    def active(self) -> bool:
        return self._active

    def add_close_callback(self, fn: Callable[["Subscription"], None]) -> None:
        self._close_callbacks.append(fn)

    async def deliver(self, payload: dict) -> bool:
        """Invoke the callback if still subscribed. Returns whether it ran."""
        if not self._active:
            return False
        result = self._callback(payload)
        if inspect.isawaitable(result):
            await result
        return True

    def unsubscribe(self) -> None:
        """Stop delivery and release broker resources. Safe to call twice."""
        if not self._active:
            return
        self._active = False
        for fn in self._close_callbacks:
            try:
                fn(self)
            except Exception:
                logger.exception(f"Error while closing subscription on {self.channel}")
        self._close_callbacks.clear()

    def __repr__(self):
        state = "active" if self._active else "closed"
        return f"<Subscription {self.channel} {state}>"


class BaseStatusBroker(ABC):
    """Abstract base class for status change brokers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish(self, channel: str, payload: dict[str, Any]) -> int:
        """
        Publish a JSON-serializable payload.

        Returns:
            Number of subscribers the message reached (best effort)
        """
        pass

    @abstractmethod
    async def subscribe(self, channel: str, callback: EventCallback) -> Subscription:
        """Register ``callback`` for every message on ``channel``."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Drop every subscription and release connections."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check broker connectivity."""
        pass

    async def safe_publish(self, channel: str, payload: dict[str, Any]) -> Optional[int]:
        """Publish, logging instead of raising when the broker is down."""
        try:
            return await self.publish(channel, payload)
        except Exception as e:
            logger.warning(f"Status publish to {channel} failed ({self.provider_name}): {e}")
            return None
