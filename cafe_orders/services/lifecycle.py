"""
Order Lifecycle Manager

Owns the order status state machine:

    pending → preparing → ready → collected → completed

``collected`` is what staff pick when the customer takes the food; it is
rewritten to ``completed`` before anything is written, so no row ever
holds ``collected``. ``completed`` is terminal and drops the order out
of every active-orders read.

Transitions only move forward. Asking for the status an order already
has is a no-op success.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_orders import repository
from cafe_orders.core.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from cafe_orders.models import Order, OrderStatus, utc_now
from cafe_orders.services.notifier import BaseStatusBroker, publish_order_status

logger = logging.getLogger(__name__)

STATUS_SEQUENCE: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COLLECTED,
    OrderStatus.COMPLETED,
)

TERMINAL_STATUS = OrderStatus.COMPLETED


@dataclass
class TransitionResult:
    """
    Outcome of a status transition.

    Attributes:
        success: Whether the requested status is now persisted
        order: The order after the attempt (unchanged on failure)
        previous_status: Status before the attempt
        changed: False for a no-op (already in the requested status)
        error: Service error describing the failure, if any
    """
    success: bool
    order: Optional[Order] = None
    previous_status: Optional[OrderStatus] = None
    changed: bool = False
    error: Optional[ServiceError] = None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None


def parse_status(value: str) -> OrderStatus:
    """Map a requested status string to ``OrderStatus``."""
    try:
        return OrderStatus(value.strip().lower())
    except (AttributeError, ValueError):
        valid = ", ".join(s.value for s in STATUS_SEQUENCE)
        raise ValidationError(f"Invalid status. Must be one of: {valid}")


def normalize_status(status: OrderStatus) -> OrderStatus:
    """``collected`` is stored as ``completed``."""
    if status == OrderStatus.COLLECTED:
        return OrderStatus.COMPLETED
    return status


def status_rank(status: OrderStatus) -> int:
    return STATUS_SEQUENCE.index(status)


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raise ``ConflictError`` when ``target`` would move the order backwards."""
    if current == target:
        return
    if current == TERMINAL_STATUS:
        raise ConflictError(f"Order is already {TERMINAL_STATUS.value}")
    if status_rank(target) < status_rank(current):
        raise ConflictError(
            f"Cannot move order from '{current.value}' back to '{target.value}'"
        )


def is_active(order: Order) -> bool:
    return order.status != TERMINAL_STATUS


async def transition(
    session: AsyncSession,
    order_number: int,
    requested_status: str,
    broker: Optional[BaseStatusBroker] = None,
) -> TransitionResult:
    """
    Move an order to ``requested_status``.

    On success the new status is committed and published to live
    viewers. On failure the session is rolled back, nothing is
    published, and the result carries the error.
    """
    try:
        target = normalize_status(parse_status(requested_status))
    except ValidationError as e:
        return TransitionResult(success=False, error=e)

    try:
        order = await repository.get_order(session, order_number)
    except SQLAlchemyError as e:
        logger.error(f"Failed to load order #{order_number}: {e}")
        return TransitionResult(success=False, error=PersistenceError("Failed to load order"))

    if order is None:
        return TransitionResult(
            success=False,
            error=NotFoundError(f"Order #{order_number} not found"),
        )

    previous = order.status
    try:
        check_transition(previous, target)
    except ConflictError as e:
        logger.info(f"Rejected transition for order #{order_number}: {e.message}")
        return TransitionResult(success=False, order=order, previous_status=previous, error=e)

    if previous == target:
        return TransitionResult(success=True, order=order, previous_status=previous, changed=False)

    now = utc_now()
    order.status = target
    order.updated_at = now
    if target == TERMINAL_STATUS:
        order.completed_at = now

    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to update order #{order_number} to {target.value}: {e}")
        return TransitionResult(
            success=False,
            previous_status=previous,
            error=PersistenceError("Failed to update order status"),
        )

    logger.info(f"Order #{order_number}: {previous.value} → {target.value}")
    await publish_order_status(order, broker)

    return TransitionResult(success=True, order=order, previous_status=previous, changed=True)


async def list_active_orders(session: AsyncSession) -> Sequence[Order]:
    """Orders still in progress (status other than completed), newest first."""
    try:
        return await repository.list_orders(session, active_only=True)
    except SQLAlchemyError as e:
        logger.error(f"Failed to list active orders: {e}")
        raise PersistenceError("Failed to fetch orders")


async def list_orders(
    session: AsyncSession,
    active_only: bool = False,
    skip: int = 0,
    limit: Optional[int] = None,
) -> tuple[int, Sequence[Order]]:
    """One page of orders, newest first, with the total matching count."""
    try:
        total = await repository.count_orders(session, active_only=active_only)
        orders = await repository.list_orders(
            session, active_only=active_only, skip=skip, limit=limit
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to list orders: {e}")
        raise PersistenceError("Failed to fetch orders")
    return total, orders
