import pytest
from sqlalchemy import func, select

from cafe_orders.core.errors import ValidationError
from cafe_orders.database import async_session_maker
from cafe_orders.models import SHOP_STATUS_ID, ShopStatus
from cafe_orders.schemas import ShopSettingsUpdate
from cafe_orders.services import shop
from cafe_orders.services.notifier import SHOP_STATUS_CHANNEL


async def test_first_read_creates_open_singleton(session):
    status = await shop.get_shop_status(session)

    assert status.id == SHOP_STATUS_ID
    assert status.is_open
    assert status.is_taking_orders
    assert status.shop_name == "Smokies Restaurant"
    assert status.updated_by == "system"


async def test_reads_always_return_the_same_row(session):
    await shop.get_shop_status(session)
    async with async_session_maker() as other:
        await shop.get_shop_status(other)

    count = (await session.execute(select(func.count(ShopStatus.id)))).scalar()
    assert count == 1


async def test_toggle_shop_sets_and_flips(session, broker):
    received = []
    await broker.subscribe(SHOP_STATUS_CHANNEL, received.append)

    closed = await shop.toggle_shop(session, "closed", broker=broker)
    assert not closed.is_open
    assert closed.updated_by == "admin"

    reopened = await shop.toggle_shop(session, None, broker=broker)
    assert reopened.is_open

    assert [m["is_open"] for m in received] == [False, True]
    assert received[0]["message"] == closed.closed_message


async def test_toggle_shop_rejects_unknown_status(session, broker):
    with pytest.raises(ValidationError):
        await shop.toggle_shop(session, "maybe", broker=broker)


async def test_toggle_orders(session, broker):
    status = await shop.toggle_orders(session, False, broker=broker)
    assert status.is_open
    assert not status.is_taking_orders

    status = await shop.toggle_orders(session, None, broker=broker)
    assert status.is_taking_orders


async def test_update_settings_changes_only_given_fields(session, broker):
    before = await shop.get_shop_status(session)
    closing = before.closing_time

    status = await shop.update_shop_settings(
        session,
        ShopSettingsUpdate(shop_name="Smokies Downtown", shop_message="Now serving brunch"),
        broker=broker,
    )

    assert status.shop_name == "Smokies Downtown"
    assert status.display_message == "Now serving brunch"
    assert status.closing_time == closing


async def test_update_settings_requires_a_field(session, broker):
    with pytest.raises(ValidationError):
        await shop.update_shop_settings(session, ShopSettingsUpdate(), broker=broker)
