"""
Live Status Notifier

Returns the memory or Redis status broker based on ENV_MODE, and builds
the order/shop events every writer publishes.

Environment Switching:
    - ENV_MODE=development → MemoryStatusBroker (single process)
    - ENV_MODE=staging/production → RedisStatusBroker
"""

import logging
from functools import lru_cache
from typing import Optional

from cafe_orders.core.config import get_settings
from cafe_orders.models import Order, ShopStatus, utc_now
from cafe_orders.schemas import OrderStatusEvent, ShopStatusEvent
from cafe_orders.services.notifier.base import (
    ALL_ORDERS_CHANNEL,
    SHOP_STATUS_CHANNEL,
    BaseStatusBroker,
    Subscription,
    order_channel,
)
from cafe_orders.services.notifier.memory import MemoryStatusBroker
from cafe_orders.services.notifier.redis import RedisStatusBroker
from cafe_orders.services.notifier.watcher import (
    LatestState,
    LiveFeed,
    OrderStatusWatcher,
    StatusPoller,
)

logger = logging.getLogger(__name__)


@lru_cache()
def get_status_broker() -> BaseStatusBroker:
    """Get the configured status broker."""
    settings = get_settings()

    if settings.use_redis_broker:
        logger.info(f"Status Broker: Using RedisStatusBroker ({settings.env_mode.value} mode)")
        return RedisStatusBroker(settings.redis_url)
    logger.info("Status Broker: Using MemoryStatusBroker (development mode)")
    return MemoryStatusBroker()


def reset_status_broker() -> None:
    """Clear the cached broker instance."""
    get_status_broker.cache_clear()


# =============================================================================
# EVENTS
# =============================================================================

def order_event(order: Order) -> OrderStatusEvent:
    return OrderStatusEvent(
        order_number=order.order_number,
        status=order.status.value,
        total_amount=order.total_amount,
        updated_at=order.updated_at or order.created_at or utc_now(),
    )


def shop_event(shop: ShopStatus) -> ShopStatusEvent:
    return ShopStatusEvent(
        is_open=shop.is_open,
        status=shop.current_status,
        is_taking_orders=shop.is_taking_orders,
        message=shop.display_message if shop.is_open else shop.closed_message,
        updated_at=shop.last_updated or utc_now(),
    )


async def publish_order_status(order: Order, broker: Optional[BaseStatusBroker] = None) -> None:
    """Push an order's current status to its own channel and the staff channel."""
    broker = broker or get_status_broker()
    payload = order_event(order).model_dump(mode="json")
    await broker.safe_publish(order_channel(order.order_number), payload)
    await broker.safe_publish(ALL_ORDERS_CHANNEL, payload)


async def publish_shop_status(shop: ShopStatus, broker: Optional[BaseStatusBroker] = None) -> None:
    broker = broker or get_status_broker()
    await broker.safe_publish(SHOP_STATUS_CHANNEL, shop_event(shop).model_dump(mode="json"))


__all__ = [
    "get_status_broker",
    "reset_status_broker",
    "order_event",
    "shop_event",
    "publish_order_status",
    "publish_shop_status",
    "BaseStatusBroker",
    "MemoryStatusBroker",
    "RedisStatusBroker",
    "Subscription",
    "LatestState",
    "LiveFeed",
    "OrderStatusWatcher",
    "StatusPoller",
    "ALL_ORDERS_CHANNEL",
    "SHOP_STATUS_CHANNEL",
    "order_channel",
]
