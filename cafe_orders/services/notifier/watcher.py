"""
Live Status Feeds

A feed has two producers, a broker subscription and a fixed-interval
poller, feeding one idempotent consumer. The consumer keeps the newest
``updated_at`` it has applied per key and drops anything not strictly
newer, so duplicate or stale deliveries from either producer are
harmless.

``OrderStatusWatcher`` adds the tracking-view behaviour: the first time
it sees ``completed`` it schedules one completion callback after a fixed
delay.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from cafe_orders.core.config import get_settings
from cafe_orders.models import OrderStatus
from cafe_orders.schemas import OrderStatusEvent
from cafe_orders.services.notifier.base import BaseStatusBroker, Subscription, order_channel

logger = logging.getLogger(__name__)

EventT = TypeVar("EventT", bound=BaseModel)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LatestState(Generic[EventT]):
    """
    Compare-and-set consumer keyed by ``key(event)``.

    ``apply`` forwards an event to ``on_change`` only when its
    ``updated_at`` is strictly newer than the last one applied for the
    same key.
    """

    def __init__(
        self,
        on_change: Callable[[EventT], Awaitable[None]],
        key: Optional[Callable[[EventT], Any]] = None,
    ):
        self._on_change = on_change
        self._key = key or (lambda event: None)
        self._seen: dict[Any, datetime] = {}
        self._latest: dict[Any, EventT] = {}

    def latest(self, key: Any = None) -> Optional[EventT]:
        return self._latest.get(key)

    async def apply(self, event: EventT) -> bool:
        key = self._key(event)
        stamp = as_utc(event.updated_at)
        last = self._seen.get(key)
        if last is not None and stamp <= last:
            return False
        self._seen[key] = stamp
        self._latest[key] = event
        await self._on_change(event)
        return True


class StatusPoller:
    """Re-fetches on a fixed interval until cancelled."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Sequence[EventT]]],
        consumer: Callable[[EventT], Awaitable[Any]],
        interval: float,
        name: str = "status-poller",
    ):
        self.fetch = fetch
        self.consumer = consumer
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def poll_once(self) -> None:
        for event in await self.fetch():
            await self.consumer(event)

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{self.name}: poll failed: {e}")
            await asyncio.sleep(self.interval)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


class LiveFeed(Generic[EventT]):
    """
    One subscription plus one poller feeding a ``LatestState``.

    ``close()`` must be called when the viewer goes away; it
    unsubscribes and cancels the poller.
    """

    def __init__(
        self,
        broker: BaseStatusBroker,
        channel: str,
        event_type: Type[EventT],
        fetch: Callable[[], Awaitable[Sequence[EventT]]],
        on_change: Callable[[EventT], Awaitable[None]],
        key: Optional[Callable[[EventT], Any]] = None,
        poll_interval: Optional[float] = None,
    ):
        self.broker = broker
        self.channel = channel
        self.event_type = event_type
        self.state: LatestState[EventT] = LatestState(self._handle_change, key=key)
        self._on_change = on_change
        self._subscription: Optional[Subscription] = None
        self._poller = StatusPoller(
            fetch,
            self.state.apply,
            poll_interval or get_settings().status_poll_interval_seconds,
            name=f"poller:{channel}",
        )
        self._closed = False

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def polling(self) -> bool:
        return self._poller.running

    async def start(self) -> None:
        try:
            self._subscription = await self.broker.subscribe(self.channel, self._on_message)
        except Exception as e:
            # Polling alone still keeps the viewer current
            logger.warning(f"Subscribe to {self.channel} failed, polling only: {e}")
        self._poller.start()

    async def _on_message(self, payload: dict) -> None:
        try:
            event = self.event_type.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed event on {self.channel}: {e}")
            return
        await self.state.apply(event)

    async def _handle_change(self, event: EventT) -> None:
        if self._closed:
            return
        await self._on_change(event)

    async def close(self) -> None:
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._poller.cancel()


class OrderStatusWatcher(LiveFeed[OrderStatusEvent]):
    """Tracking feed for one order with a single delayed completion hook."""

    def __init__(
        self,
        broker: BaseStatusBroker,
        order_number: int,
        fetch: Callable[[], Awaitable[Sequence[OrderStatusEvent]]],
        on_status: Callable[[OrderStatusEvent], Awaitable[None]],
        on_completed: Callable[[OrderStatusEvent], Awaitable[None]],
        poll_interval: Optional[float] = None,
        completion_delay: Optional[float] = None,
    ):
        super().__init__(
            broker,
            order_channel(order_number),
            OrderStatusEvent,
            fetch,
            self._status_changed,
            poll_interval=poll_interval,
        )
        self.order_number = order_number
        self._on_status = on_status
        self._on_completed = on_completed
        if completion_delay is None:
            completion_delay = get_settings().completion_redirect_delay_seconds
        self.completion_delay = completion_delay
        self._completion_task: Optional[asyncio.Task] = None

    @property
    def completion_scheduled(self) -> bool:
        return self._completion_task is not None

    async def _status_changed(self, event: OrderStatusEvent) -> None:
        await self._on_status(event)
        if event.status == OrderStatus.COMPLETED.value and self._completion_task is None:
            logger.info(f"Order #{self.order_number} completed, redirect in {self.completion_delay}s")
            self._completion_task = asyncio.create_task(
                self._complete_later(event),
                name=f"completion:{self.order_number}",
            )

    async def _complete_later(self, event: OrderStatusEvent) -> None:
        await asyncio.sleep(self.completion_delay)
        if not self._closed:
            await self._on_completed(event)

    async def wait_completed(self) -> None:
        """Wait for the completion hook, if one has been scheduled."""
        if self._completion_task is not None:
            await self._completion_task

    async def close(self) -> None:
        await super().close()
        if self._completion_task is not None and not self._completion_task.done():
            self._completion_task.cancel()
