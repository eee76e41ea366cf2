"""
Data Access Layer

Thin, typed queries over the five record kinds. Functions take the
caller's ``AsyncSession`` and never commit: the service that owns the
operation decides the transaction boundary.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_orders.models import (
    SHOP_STATUS_ID,
    MenuItem,
    Order,
    OrderStatus,
    ShopStatus,
    VariantOption,
    utc_now,
)

logger = logging.getLogger(__name__)


# =============================================================================
# MENU ITEMS
# =============================================================================

async def list_menu_items(
    session: AsyncSession,
    base_name: Optional[str] = None,
    size_code: Optional[str] = None,
    available_only: bool = False,
) -> Sequence[MenuItem]:
    query = select(MenuItem).order_by(
        MenuItem.base_name, MenuItem.size_code, MenuItem.protein
    )
    if base_name:
        query = query.where(MenuItem.base_name == base_name)
    if size_code is not None:
        query = query.where(MenuItem.size_code == size_code)
    if available_only:
        query = query.where(MenuItem.is_available.is_(True))

    result = await session.execute(query)
    return result.scalars().all()


async def get_menu_item(session: AsyncSession, item_id: int) -> Optional[MenuItem]:
    return await session.get(MenuItem, item_id)


async def add_menu_item(session: AsyncSession, item: MenuItem) -> MenuItem:
    session.add(item)
    await session.flush()
    return item


async def update_menu_card_price(
    session: AsyncSession, base_name: str, size_code: str, price: float
) -> int:
    """Set the price on every protein row of one (base name, size) card."""
    result = await session.execute(
        update(MenuItem)
        .where(MenuItem.base_name == base_name, MenuItem.size_code == size_code)
        .values(price=price, updated_at=utc_now())
    )
    return result.rowcount or 0


async def delete_menu_item(session: AsyncSession, item_id: int) -> int:
    result = await session.execute(delete(MenuItem).where(MenuItem.id == item_id))
    return result.rowcount or 0


# =============================================================================
# VARIANT OPTIONS
# =============================================================================

async def list_variants(
    session: AsyncSession, active_only: bool = False
) -> Sequence[VariantOption]:
    query = select(VariantOption).order_by(VariantOption.display_order, VariantOption.id)
    if active_only:
        query = query.where(VariantOption.is_active.is_(True))
    result = await session.execute(query)
    return result.scalars().all()


async def get_variant_by_name(session: AsyncSession, name: str) -> Optional[VariantOption]:
    result = await session.execute(
        select(VariantOption).where(VariantOption.option_name == name)
    )
    return result.scalar_one_or_none()


async def next_variant_display_order(session: AsyncSession) -> int:
    result = await session.execute(select(func.max(VariantOption.display_order)))
    return (result.scalar() or 0) + 1


async def add_variant(session: AsyncSession, variant: VariantOption) -> VariantOption:
    session.add(variant)
    await session.flush()
    return variant


async def delete_variant_by_name(session: AsyncSession, name: str) -> int:
    result = await session.execute(
        delete(VariantOption).where(VariantOption.option_name == name)
    )
    return result.rowcount or 0


# =============================================================================
# ORDERS
# =============================================================================

async def get_order(session: AsyncSession, order_number: int) -> Optional[Order]:
    return await session.get(Order, order_number)


async def get_order_by_credentials(
    session: AsyncSession, order_number: int, verification_number: int
) -> Optional[Order]:
    result = await session.execute(
        select(Order).where(
            Order.order_number == order_number,
            Order.verification_number == verification_number,
        )
    )
    return result.scalar_one_or_none()


async def list_orders(
    session: AsyncSession,
    active_only: bool = False,
    skip: int = 0,
    limit: Optional[int] = None,
) -> Sequence[Order]:
    """Newest first. Active means any status other than completed."""
    query = select(Order).order_by(Order.created_at.desc(), Order.order_number.desc())
    if active_only:
        query = query.where(Order.status != OrderStatus.COMPLETED)
    if skip:
        query = query.offset(skip)
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return result.scalars().all()


async def count_orders(session: AsyncSession, active_only: bool = False) -> int:
    query = select(func.count(Order.order_number))
    if active_only:
        query = query.where(Order.status != OrderStatus.COMPLETED)
    result = await session.execute(query)
    return result.scalar() or 0


async def verification_code_in_use(session: AsyncSession, code: int) -> bool:
    """True when a non-completed order already carries ``code``."""
    result = await session.execute(
        select(func.count(Order.order_number)).where(
            Order.verification_number == code,
            Order.status != OrderStatus.COMPLETED,
        )
    )
    return (result.scalar() or 0) > 0


async def refresh_order(session: AsyncSession, order: Order) -> Order:
    await session.refresh(order, attribute_names=["items"])
    return order


# =============================================================================
# SHOP STATUS
# =============================================================================

async def get_shop_status(session: AsyncSession) -> Optional[ShopStatus]:
    return await session.get(ShopStatus, SHOP_STATUS_ID)


async def add_shop_status(session: AsyncSession, shop: ShopStatus) -> ShopStatus:
    shop.id = SHOP_STATUS_ID
    session.add(shop)
    await session.flush()
    return shop
