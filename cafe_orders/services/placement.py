"""
Order Placement Workflow

Turns a customer basket into one ``orders`` row plus its ``order_items``
snapshot rows:

    1. Validate the basket and the client-side total (before any write)
    2. Check the shop is open and taking orders
    3. Draw a verification code unused by any active order
    4. Insert order + items in one transaction, redrawing the code if a
       concurrent placement took it first
    5. Publish the initial ``pending`` status

The order and its items commit together or not at all.
"""

import logging
import random
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_orders import repository
from cafe_orders.core.config import get_settings
from cafe_orders.core.errors import ConflictError, PersistenceError, ValidationError
from cafe_orders.models import Order, OrderItem, OrderStatus, SizeCode, utc_now
from cafe_orders.schemas import OrderCreate, OrderItemCreate
from cafe_orders.services import shop
from cafe_orders.services.notifier import BaseStatusBroker, publish_order_status

logger = logging.getLogger(__name__)

TOTAL_TOLERANCE = 0.01
MAX_CODE_ATTEMPTS = 1000
MAX_INSERT_ATTEMPTS = 3
DEFAULT_PROTEIN = "Standard"

_SIZE_SUFFIXES = (
    (" Regular", SizeCode.REGULAR),
    (" Large", SizeCode.LARGE),
)


def split_display_name(name: str) -> tuple[str, str]:
    """
    Split a display name into base name and size code.

    >>> split_display_name("Montana BBQ Hamburger Regular")
    ('Montana BBQ Hamburger', 'R')
    >>> split_display_name("Fries Large")
    ('Fries', 'L')
    >>> split_display_name("Milkshake")
    ('Milkshake', '')
    """
    name = name.strip()
    for suffix, size in _SIZE_SUFFIXES:
        if name.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)].strip(), size.value
    return name, SizeCode.NONE.value


def calculate_total(items: list[OrderItemCreate]) -> float:
    return round(sum(item.price * item.quantity for item in items), 2)


def validate_basket(order_data: OrderCreate) -> float:
    """
    Check item count and that the submitted total matches the lines.

    Returns:
        The server-side total

    Raises:
        ValidationError: Empty/oversized basket or total mismatch
    """
    settings = get_settings()

    if not order_data.items:
        raise ValidationError("Order must contain at least one item")
    if len(order_data.items) > settings.max_items_per_order:
        raise ValidationError(
            f"Order cannot contain more than {settings.max_items_per_order} items"
        )

    calculated = calculate_total(order_data.items)
    if abs(calculated - order_data.total_amount) >= TOTAL_TOLERANCE:
        raise ValidationError(
            "Order total does not match items",
            detail=f"submitted {order_data.total_amount:.2f}, items sum to {calculated:.2f}",
        )
    return calculated


async def generate_verification_code(
    session: AsyncSession,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Draw a fixed-width code not carried by any active order.

    Raises:
        PersistenceError: No free code after ``MAX_CODE_ATTEMPTS`` draws
    """
    rng = rng or random.SystemRandom()
    low, high = get_settings().verification_code_range

    for _ in range(MAX_CODE_ATTEMPTS):
        code = rng.randint(low, high)
        if not await repository.verification_code_in_use(session, code):
            return code

    logger.error("Could not generate a unique verification number")
    raise PersistenceError("Could not generate unique verification number")


def build_order_items(items: list[OrderItemCreate]) -> list[OrderItem]:
    order_items = []
    for item in items:
        base_name, size_code = split_display_name(item.name)
        order_items.append(
            OrderItem(
                menu_item_id=item.menu_item_id,
                base_name=base_name,
                size_code=size_code,
                protein=(item.variant or "").strip() or DEFAULT_PROTEIN,
                quantity=item.quantity,
                unit_price=item.price,
                total_amount=item.line_total,
            )
        )
    return order_items


async def place_order(
    session: AsyncSession,
    order_data: OrderCreate,
    broker: Optional[BaseStatusBroker] = None,
) -> Order:
    """
    Persist a new ``pending`` order with its items.

    Returns:
        The committed order, items loaded

    Raises:
        ValidationError: Bad basket or total
        ConflictError: Shop closed or not taking orders
        PersistenceError: Database failure (nothing is left behind)
    """
    total = validate_basket(order_data)

    shop_status = await shop.get_shop_status(session)
    if not shop_status.is_open or not shop_status.is_taking_orders:
        raise ConflictError(
            shop_status.closed_message or "The shop is not accepting orders right now"
        )

    customer = order_data.customer_info
    now = utc_now()

    for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
        try:
            verification_number = await generate_verification_code(session)

            order = Order(
                verification_number=verification_number,
                status=OrderStatus.PENDING,
                total_amount=round(order_data.total_amount, 2),
                customer_name=customer.name if customer else None,
                customer_phone=customer.phone if customer else None,
                customer_notes=order_data.customer_notes or None,
                created_at=now,
                updated_at=now,
            )
            order.items = build_order_items(order_data.items)

            session.add(order)
            await session.commit()
            break
        except IntegrityError as e:
            await session.rollback()
            if attempt == MAX_INSERT_ATTEMPTS:
                logger.error(f"Order creation failed after {attempt} attempts, nothing written: {e.orig}")
                raise PersistenceError("Failed to create order")
            logger.warning(
                f"Verification number {verification_number} taken concurrently, "
                f"retrying ({attempt}/{MAX_INSERT_ATTEMPTS})"
            )
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Order creation failed, nothing written: {e}")
            raise PersistenceError("Failed to create order")

    logger.info(
        f"Order #{order.order_number} created: {len(order.items)} item(s), "
        f"total {total:.2f}"
    )
    await publish_order_status(order, broker)
    return order


async def track_order(
    session: AsyncSession, order_number: int, verification_number: int
) -> Optional[Order]:
    """Look up an order by its (order number, verification code) pair."""
    try:
        return await repository.get_order_by_credentials(
            session, order_number, verification_number
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch order #{order_number}: {e}")
        raise PersistenceError("Failed to fetch order")
