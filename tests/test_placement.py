import pydantic
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import make_order
from cafe_orders import repository
from cafe_orders.core.errors import ConflictError, PersistenceError, ValidationError
from cafe_orders.models import OrderStatus
from cafe_orders.schemas import OrderCreate
from cafe_orders.services import placement, shop
from cafe_orders.services.notifier import ALL_ORDERS_CHANNEL


class SequenceRandom:
    """Stands in for SystemRandom, handing out fixed draws."""

    def __init__(self, values):
        self._values = iter(values)

    def randint(self, low, high):
        return next(self._values)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Montana BBQ Hamburger Regular", ("Montana BBQ Hamburger", "R")),
        ("Fries Large", ("Fries", "L")),
        ("Milkshake", ("Milkshake", "")),
        ("  Crispy Wrap Regular ", ("Crispy Wrap", "R")),
        ("Large", ("Large", "")),
    ],
)
def test_split_display_name(name, expected):
    assert placement.split_display_name(name) == expected


def test_validate_basket_returns_server_total(order_payload):
    data = OrderCreate.model_validate(order_payload)
    assert placement.validate_basket(data) == 560


def test_validate_basket_rejects_total_mismatch(order_payload):
    order_payload["totalAmount"] = 500
    data = OrderCreate.model_validate(order_payload)

    with pytest.raises(ValidationError) as exc:
        placement.validate_basket(data)
    assert "does not match" in exc.value.message
    assert "560.00" in exc.value.detail


def test_validate_basket_tolerates_rounding(order_payload):
    order_payload["totalAmount"] = 560.004
    data = OrderCreate.model_validate(order_payload)
    assert placement.validate_basket(data) == 560


def test_validate_basket_rejects_too_many_items(order_payload):
    line = order_payload["items"][0]
    order_payload["items"] = [dict(line, quantity=1) for _ in range(21)]
    order_payload["totalAmount"] = 280 * 21
    data = OrderCreate.model_validate(order_payload)

    with pytest.raises(ValidationError):
        placement.validate_basket(data)


def test_empty_basket_is_rejected_by_schema(order_payload):
    order_payload["items"] = []
    with pytest.raises(pydantic.ValidationError):
        OrderCreate.model_validate(order_payload)


async def test_verification_code_in_five_digit_range(session):
    for _ in range(20):
        code = await placement.generate_verification_code(session)
        assert 10000 <= code <= 99999


async def test_verification_code_skips_codes_of_active_orders(session):
    await make_order(session, verification_number=12345)

    code = await placement.generate_verification_code(
        session, rng=SequenceRandom([12345, 12345, 23456])
    )
    assert code == 23456


async def test_verification_code_reuses_codes_of_completed_orders(session):
    await make_order(session, verification_number=12345, status=OrderStatus.COMPLETED)

    code = await placement.generate_verification_code(session, rng=SequenceRandom([12345]))
    assert code == 12345


async def test_verification_code_gives_up_after_max_attempts(session, monkeypatch):
    await make_order(session, verification_number=12345)
    monkeypatch.setattr(placement, "MAX_CODE_ATTEMPTS", 5)

    with pytest.raises(PersistenceError):
        await placement.generate_verification_code(session, rng=SequenceRandom([12345] * 5))


async def test_place_order_snapshots_items(session, order_payload, broker):
    data = OrderCreate.model_validate(order_payload)

    order = await placement.place_order(session, data, broker=broker)

    assert order.status == OrderStatus.PENDING
    assert order.total_amount == 560
    assert order.customer_name == "Sarah"
    assert 10000 <= order.verification_number <= 99999
    assert len(order.items) == 1
    item = order.items[0]
    assert item.base_name == "Montana BBQ Hamburger"
    assert item.size_code == "R"
    assert item.protein == "Beef"
    assert item.quantity == 2
    assert item.unit_price == 280
    assert item.total_amount == 560
    assert item.menu_item_id == 1


async def test_place_order_defaults_protein(session, order_payload, broker):
    order_payload["items"][0]["variant"] = None
    order = await placement.place_order(session, OrderCreate.model_validate(order_payload), broker=broker)
    assert order.items[0].protein == placement.DEFAULT_PROTEIN


async def test_place_order_publishes_pending(session, order_payload, broker):
    received = []
    await broker.subscribe(ALL_ORDERS_CHANNEL, received.append)

    order = await placement.place_order(session, OrderCreate.model_validate(order_payload), broker=broker)

    assert len(received) == 1
    assert received[0]["event"] == "order_status"
    assert received[0]["order_number"] == order.order_number
    assert received[0]["status"] == "pending"
    assert received[0]["total_amount"] == 560


async def test_place_order_writes_nothing_when_commit_fails(session, order_payload, broker, monkeypatch):
    await shop.get_shop_status(session)
    received = []
    await broker.subscribe(ALL_ORDERS_CHANNEL, received.append)

    async def failing_commit():
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(session, "commit", failing_commit)

    with pytest.raises(PersistenceError):
        await placement.place_order(session, OrderCreate.model_validate(order_payload), broker=broker)

    monkeypatch.undo()
    assert await repository.count_orders(session) == 0
    assert received == []


async def test_place_order_rejected_when_shop_closed(session, order_payload, broker):
    await shop.toggle_shop(session, "closed", broker=broker)

    with pytest.raises(ConflictError):
        await placement.place_order(session, OrderCreate.model_validate(order_payload), broker=broker)
    assert await repository.count_orders(session) == 0


async def test_place_order_rejected_when_not_taking_orders(session, order_payload, broker):
    await shop.toggle_orders(session, False, broker=broker)

    with pytest.raises(ConflictError):
        await placement.place_order(session, OrderCreate.model_validate(order_payload), broker=broker)


async def test_track_order_requires_matching_code(session):
    order = await make_order(session, verification_number=54321)

    found = await placement.track_order(session, order.order_number, 54321)
    assert found.order_number == order.order_number
    assert await placement.track_order(session, order.order_number, 54320) is None
    assert await placement.track_order(session, order.order_number + 1, 54321) is None


async def test_orders_get_distinct_codes(session, order_payload, broker):
    data = OrderCreate.model_validate(order_payload)
    codes = set()
    for _ in range(5):
        order = await placement.place_order(session, data, broker=broker)
        codes.add(order.verification_number)
    assert len(codes) == 5


async def test_active_orders_cannot_share_a_code(session):
    await make_order(session, verification_number=12345)

    with pytest.raises(IntegrityError):
        await make_order(session, verification_number=12345)
    await session.rollback()

    await make_order(session, verification_number=12345, status=OrderStatus.COMPLETED)
    assert await repository.count_orders(session) == 2


async def test_place_order_redraws_code_taken_concurrently(session, order_payload, broker, monkeypatch):
    await make_order(session, verification_number=12345)
    draws = iter([12345, 23456])

    async def stale_draw(session, rng=None):
        return next(draws)

    monkeypatch.setattr(placement, "generate_verification_code", stale_draw)

    order = await placement.place_order(session, OrderCreate.model_validate(order_payload), broker=broker)

    assert order.verification_number == 23456
    assert await repository.count_orders(session) == 2


async def test_place_order_gives_up_after_repeated_collisions(session, order_payload, broker, monkeypatch):
    await make_order(session, verification_number=12345)

    async def stale_draw(session, rng=None):
        return 12345

    monkeypatch.setattr(placement, "generate_verification_code", stale_draw)

    with pytest.raises(PersistenceError):
        await placement.place_order(session, OrderCreate.model_validate(order_payload), broker=broker)
    assert await repository.count_orders(session) == 1
