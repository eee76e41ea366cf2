import pytest
from sqlalchemy.exc import OperationalError

from conftest import make_order
from cafe_orders import repository
from cafe_orders.database import async_session_maker
from cafe_orders.core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from cafe_orders.models import OrderStatus
from cafe_orders.services import lifecycle
from cafe_orders.services.notifier import ALL_ORDERS_CHANNEL, order_channel


@pytest.mark.parametrize(
    "current, target",
    [
        (OrderStatus.PENDING, OrderStatus.PREPARING),
        (OrderStatus.PENDING, OrderStatus.READY),
        (OrderStatus.PREPARING, OrderStatus.READY),
        (OrderStatus.READY, OrderStatus.COMPLETED),
        (OrderStatus.READY, OrderStatus.READY),
    ],
)
def test_check_transition_allows_forward_moves(current, target):
    lifecycle.check_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (OrderStatus.READY, OrderStatus.PENDING),
        (OrderStatus.PREPARING, OrderStatus.PENDING),
        (OrderStatus.COMPLETED, OrderStatus.READY),
    ],
)
def test_check_transition_rejects_backward_moves(current, target):
    with pytest.raises(ConflictError):
        lifecycle.check_transition(current, target)


def test_parse_status_is_case_insensitive():
    assert lifecycle.parse_status(" Preparing ") == OrderStatus.PREPARING


def test_parse_status_rejects_unknown():
    with pytest.raises(ValidationError) as exc:
        lifecycle.parse_status("cooking")
    assert "pending" in exc.value.message


def test_collected_normalizes_to_completed():
    assert lifecycle.normalize_status(OrderStatus.COLLECTED) == OrderStatus.COMPLETED
    assert lifecycle.normalize_status(OrderStatus.READY) == OrderStatus.READY


async def test_transition_walks_full_lifecycle(session, broker):
    order = await make_order(session)

    for step in ("preparing", "ready"):
        result = await lifecycle.transition(session, order.order_number, step, broker=broker)
        assert result.success
        assert result.changed
        assert result.order.status.value == step
        assert result.order.completed_at is None


async def test_collected_is_stored_as_completed(session, broker):
    order = await make_order(session, status=OrderStatus.READY)

    result = await lifecycle.transition(session, order.order_number, "collected", broker=broker)

    assert result.success
    assert result.previous_status == OrderStatus.READY
    assert result.order.status == OrderStatus.COMPLETED
    assert result.order.completed_at is not None

    async with async_session_maker() as fresh:
        reloaded = await repository.get_order(fresh, order.order_number)
    assert reloaded.status == OrderStatus.COMPLETED


async def test_transition_backward_fails_and_keeps_status(session, broker):
    order = await make_order(session, status=OrderStatus.READY)
    received = []
    await broker.subscribe(order_channel(order.order_number), received.append)

    result = await lifecycle.transition(session, order.order_number, "pending", broker=broker)

    assert not result.success
    assert isinstance(result.error, ConflictError)
    assert result.order.status == OrderStatus.READY
    assert received == []


async def test_transition_from_completed_fails(session, broker):
    order = await make_order(session, status=OrderStatus.COMPLETED)

    result = await lifecycle.transition(session, order.order_number, "ready", broker=broker)

    assert not result.success
    assert result.error_message == "Order is already completed"


async def test_same_status_is_noop_success(session, broker):
    order = await make_order(session, status=OrderStatus.PREPARING)
    received = []
    await broker.subscribe(order_channel(order.order_number), received.append)

    result = await lifecycle.transition(session, order.order_number, "preparing", broker=broker)

    assert result.success
    assert not result.changed
    assert received == []


async def test_transition_unknown_order(session, broker):
    result = await lifecycle.transition(session, 9999, "ready", broker=broker)
    assert not result.success
    assert isinstance(result.error, NotFoundError)


async def test_transition_invalid_status(session, broker):
    order = await make_order(session)
    result = await lifecycle.transition(session, order.order_number, "burnt", broker=broker)
    assert not result.success
    assert isinstance(result.error, ValidationError)


async def test_transition_publishes_to_order_and_staff_channels(session, broker):
    order = await make_order(session)
    own, staff = [], []
    await broker.subscribe(order_channel(order.order_number), own.append)
    await broker.subscribe(ALL_ORDERS_CHANNEL, staff.append)

    await lifecycle.transition(session, order.order_number, "ready", broker=broker)

    assert [m["status"] for m in own] == ["ready"]
    assert [m["order_number"] for m in staff] == [order.order_number]


async def test_failed_commit_reports_error_and_publishes_nothing(session, broker, monkeypatch):
    order = await make_order(session)
    received = []
    await broker.subscribe(ALL_ORDERS_CHANNEL, received.append)

    async def failing_commit():
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "commit", failing_commit)

    result = await lifecycle.transition(session, order.order_number, "preparing", broker=broker)

    assert not result.success
    assert isinstance(result.error, PersistenceError)
    assert result.previous_status == OrderStatus.PENDING
    assert received == []


async def test_active_orders_exclude_completed(session):
    pending = await make_order(session, verification_number=11111)
    ready = await make_order(session, verification_number=22222, status=OrderStatus.READY)
    await make_order(session, verification_number=33333, status=OrderStatus.COMPLETED)

    active = await lifecycle.list_active_orders(session)

    assert {o.order_number for o in active} == {pending.order_number, ready.order_number}
    assert all(lifecycle.is_active(o) for o in active)


async def test_list_orders_pages_with_total(session):
    for code in (11111, 22222, 33333):
        await make_order(session, verification_number=code)

    total, orders = await lifecycle.list_orders(session, skip=1, limit=1)

    assert total == 3
    assert len(orders) == 1


async def test_list_orders_database_failure_is_persistence_error(session, monkeypatch):
    async def broken_count(session, active_only=False):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(repository, "count_orders", broken_count)

    with pytest.raises(PersistenceError):
        await lifecycle.list_orders(session)
