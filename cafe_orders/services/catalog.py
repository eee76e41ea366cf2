"""
Menu and Variant Catalog

Menu rows are individual (base name, size, protein) combinations. The
customer menu groups them into one card per (base name, size) with the
available proteins and the price range.

Proteins also live in a global ``variant_options`` list. Removing an
option only shrinks what future customers can pick; order items keep
the protein name they were placed with.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_orders import repository
from cafe_orders.core.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from cafe_orders.models import MenuItem, VariantOption
from cafe_orders.schemas import MenuCard, MenuItemCreate, MenuItemUpdate
from cafe_orders.services.placement import split_display_name

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "/photo_5890062852490464111_y1.jpg"

_MUTABLE_FIELDS = ("price", "is_available", "description", "stock_quantity")


async def _commit(session: AsyncSession, action: str) -> None:
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"{action} rejected by constraint: {e.orig}")
        raise ConflictError(f"{action} conflicts with an existing entry")
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"{action} failed: {e}")
        raise PersistenceError(f"{action} failed")


# =============================================================================
# CUSTOMER MENU
# =============================================================================

def group_menu(
    items: Sequence[MenuItem],
    allowed_proteins: Optional[Sequence[str]] = None,
) -> list[MenuCard]:
    """
    Group rows into cards keyed by (base name, size).

    Args:
        items: Menu rows, already filtered to what customers may order
        allowed_proteins: Active global options. ``None`` means no
            filtering; an empty list leaves no protein selectable

    Returns:
        Cards in (base name, size) order, numbered from 1
    """
    allowed = set(allowed_proteins) if allowed_proteins is not None else None
    grouped: dict[tuple[str, str], list[MenuItem]] = {}

    for item in items:
        if allowed is not None and item.protein not in allowed:
            continue
        grouped.setdefault((item.base_name, item.size_code), []).append(item)

    cards = []
    for card_id, ((base_name, size_code), rows) in enumerate(sorted(grouped.items()), start=1):
        prices = [row.price for row in rows]
        variants = []
        for row in rows:
            if row.protein not in variants:
                variants.append(row.protein)
        if allowed_proteins is not None:
            order = {name: i for i, name in enumerate(allowed_proteins)}
            variants.sort(key=lambda name: order.get(name, len(order)))

        cards.append(
            MenuCard(
                id=card_id,
                name=rows[0].display_name,
                base_name=base_name,
                size_code=size_code,
                price=min(prices),
                min_price=min(prices),
                max_price=max(prices),
                variants=variants,
                image=next((row.image_url for row in rows if row.image_url), DEFAULT_IMAGE),
            )
        )
    return cards


async def list_menu(session: AsyncSession) -> list[MenuCard]:
    """Available menu rows grouped into customer cards."""
    try:
        items = await repository.list_menu_items(session, available_only=True)
        options = await repository.list_variants(session, active_only=True)
    except SQLAlchemyError as e:
        logger.error(f"Failed to load menu: {e}")
        raise PersistenceError("Failed to fetch menu")

    return group_menu(items, [option.option_name for option in options])


# =============================================================================
# MENU ITEM ADMINISTRATION
# =============================================================================

async def list_menu_items(
    session: AsyncSession,
    base_name: Optional[str] = None,
    size_code: Optional[str] = None,
) -> Sequence[MenuItem]:
    try:
        return await repository.list_menu_items(session, base_name=base_name, size_code=size_code)
    except SQLAlchemyError as e:
        logger.error(f"Failed to list menu items: {e}")
        raise PersistenceError("Failed to fetch menu items")


async def create_menu_item(session: AsyncSession, data: MenuItemCreate) -> MenuItem:
    description = data.description
    if description is None:
        size_label = {"R": "Regular ", "L": "Large "}.get(data.size_code, "")
        description = f"{size_label}{data.base_name} with {data.protein}"

    item = MenuItem(
        base_name=data.base_name.strip(),
        size_code=data.size_code,
        protein=data.protein.strip(),
        price=data.price,
        description=description,
        image_url=data.image_url or DEFAULT_IMAGE,
        is_available=data.is_available,
        stock_quantity=data.stock_quantity,
    )
    session.add(item)
    await _commit(session, "Menu item creation")
    logger.info(f"Menu item created: {item!r}")
    return item


async def update_menu_item(session: AsyncSession, data: MenuItemUpdate) -> MenuItem:
    """
    Partial update of one row.

    Raises:
        ValidationError: No mutable field supplied
        NotFoundError: Unknown id
    """
    changes = {
        field: getattr(data, field)
        for field in _MUTABLE_FIELDS
        if getattr(data, field) is not None
    }
    if not changes:
        raise ValidationError(
            "At least one of price, is_available, description, stock_quantity is required"
        )

    item = await repository.get_menu_item(session, data.id)
    if item is None:
        raise NotFoundError(f"Menu item {data.id} not found")

    for field, value in changes.items():
        setattr(item, field, value)
    await _commit(session, "Menu item update")
    logger.info(f"Menu item {item.id} updated: {sorted(changes)}")
    return item


async def update_menu_price(session: AsyncSession, name: str, price: float) -> int:
    """Set the price of every protein row on the card named ``name``."""
    base_name, size_code = split_display_name(name)
    updated = await repository.update_menu_card_price(session, base_name, size_code, price)
    if not updated:
        await session.rollback()
        raise NotFoundError(f"Menu item '{name}' not found")

    await _commit(session, "Menu price update")
    logger.info(f"Price of '{name}' set to {price:.2f} on {updated} row(s)")
    return updated


async def delete_menu_item(session: AsyncSession, item_id: int) -> None:
    deleted = await repository.delete_menu_item(session, item_id)
    if not deleted:
        await session.rollback()
        raise NotFoundError(f"Menu item {item_id} not found")
    await _commit(session, "Menu item deletion")
    logger.info(f"Menu item {item_id} deleted")


# =============================================================================
# GLOBAL VARIANTS
# =============================================================================

async def list_variants(session: AsyncSession) -> Sequence[VariantOption]:
    try:
        return await repository.list_variants(session)
    except SQLAlchemyError as e:
        logger.error(f"Failed to list variants: {e}")
        raise PersistenceError("Failed to fetch variants")


async def add_variant(session: AsyncSession, name: str) -> VariantOption:
    """
    Append a protein to the global list.

    Raises:
        ValidationError: Blank name
        ConflictError: Name already present
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Missing variant_name")

    if await repository.get_variant_by_name(session, name) is not None:
        raise ConflictError("Variant already exists")

    variant = VariantOption(
        option_name=name,
        is_active=True,
        display_order=await repository.next_variant_display_order(session),
    )
    session.add(variant)
    await _commit(session, "Variant creation")
    logger.info(f"Variant '{name}' added at position {variant.display_order}")
    return variant


async def remove_variant(session: AsyncSession, name: str) -> None:
    """Drop a protein from the global list; order history is untouched."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Missing variant_name")

    deleted = await repository.delete_variant_by_name(session, name)
    if not deleted:
        await session.rollback()
        raise NotFoundError(f"Variant '{name}' not found")
    await _commit(session, "Variant removal")
    logger.info(f"Variant '{name}' removed from global list")
