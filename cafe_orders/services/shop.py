"""
Shop Status Service

The shop record is a singleton (id = 1). It is created from the
configured defaults on first read; afterwards every read and write goes
to that one row.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_orders import repository
from cafe_orders.core.config import get_settings
from cafe_orders.core.errors import PersistenceError, ValidationError
from cafe_orders.models import ShopStatus, utc_now
from cafe_orders.schemas import ShopSettingsUpdate
from cafe_orders.services.notifier import BaseStatusBroker, publish_shop_status

logger = logging.getLogger(__name__)


def _default_shop() -> ShopStatus:
    settings = get_settings()
    return ShopStatus(
        current_status="open",
        shop_name=settings.shop_name,
        display_message=settings.shop_message,
        closed_message=settings.shop_closed_message,
        is_taking_orders=True,
        opening_time=settings.shop_opening_time,
        closing_time=settings.shop_closing_time,
        last_updated=utc_now(),
        updated_by="system",
    )


async def get_shop_status(session: AsyncSession) -> ShopStatus:
    """Return the singleton, creating it on first use."""
    try:
        shop = await repository.get_shop_status(session)
        if shop is not None:
            return shop

        shop = await repository.add_shop_status(session, _default_shop())
        await session.commit()
        logger.info("Shop status row created with defaults")
        return shop
    except IntegrityError:
        # Another request created it first
        await session.rollback()
        shop = await repository.get_shop_status(session)
        if shop is not None:
            return shop
        raise PersistenceError("Failed to load shop status")
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to load shop status: {e}")
        raise PersistenceError("Failed to load shop status")


async def _save(
    session: AsyncSession,
    shop: ShopStatus,
    updated_by: str,
    broker: Optional[BaseStatusBroker],
) -> ShopStatus:
    shop.last_updated = utc_now()
    shop.updated_by = updated_by
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to update shop status: {e}")
        raise PersistenceError("Failed to update shop status")

    await publish_shop_status(shop, broker)
    return shop


async def toggle_shop(
    session: AsyncSession,
    status: Optional[str],
    updated_by: str = "admin",
    broker: Optional[BaseStatusBroker] = None,
) -> ShopStatus:
    """Set open/closed. ``None`` flips the current state."""
    shop = await get_shop_status(session)
    if status is None:
        status = "closed" if shop.is_open else "open"
    if status not in ("open", "closed"):
        raise ValidationError("status must be 'open' or 'closed'")

    shop.current_status = status
    shop = await _save(session, shop, updated_by, broker)
    logger.info(f"Shop is now {shop.current_status}")
    return shop


async def toggle_orders(
    session: AsyncSession,
    is_taking_orders: Optional[bool],
    updated_by: str = "admin",
    broker: Optional[BaseStatusBroker] = None,
) -> ShopStatus:
    """Turn order taking on/off. ``None`` flips the current state."""
    shop = await get_shop_status(session)
    if is_taking_orders is None:
        is_taking_orders = not shop.is_taking_orders

    shop.is_taking_orders = is_taking_orders
    shop = await _save(session, shop, updated_by, broker)
    logger.info(f"Shop taking orders: {shop.is_taking_orders}")
    return shop


async def update_shop_settings(
    session: AsyncSession,
    changes: ShopSettingsUpdate,
    updated_by: str = "admin",
    broker: Optional[BaseStatusBroker] = None,
) -> ShopStatus:
    """Apply the provided fields; omitted fields keep their value."""
    fields = changes.model_dump(exclude_none=True)
    if not fields:
        raise ValidationError("No shop settings provided")

    shop = await get_shop_status(session)
    if "shop_message" in fields:
        shop.display_message = fields.pop("shop_message")
    for key, value in fields.items():
        setattr(shop, key, value)

    return await _save(session, shop, updated_by, broker)
