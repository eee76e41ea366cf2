import os
import tempfile

# Settings are read when cafe_orders.database is imported
_DB_DIR = tempfile.mkdtemp(prefix="cafe-orders-tests-")
_DB_PATH = os.path.join(_DB_DIR, "orders.db")
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["ADMIN_API_TOKENS"] = "test-admin-token,second-token"
os.environ["STATUS_POLL_INTERVAL_SECONDS"] = "0.05"
os.environ["COMPLETION_REDIRECT_DELAY_SECONDS"] = "0.05"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from cafe_orders.database import Base, async_session_maker
from cafe_orders.models import MenuItem, Order, OrderItem, OrderStatus, VariantOption, utc_now
from cafe_orders.services.notifier import MemoryStatusBroker, reset_status_broker
from cafe_orders.services.rate_limit import order_limiter

ADMIN_TOKEN = "test-admin-token"


# Schema resets go through a plain sqlite3 engine, outside any event loop
_schema_engine = create_engine(f"sqlite:///{_DB_PATH}")


@pytest.fixture(autouse=True)
def clean_state():
    Base.metadata.drop_all(_schema_engine)
    Base.metadata.create_all(_schema_engine)
    reset_status_broker()
    order_limiter.reset()
    yield
    reset_status_broker()


@pytest.fixture
async def session():
    async with async_session_maker() as s:
        yield s


@pytest.fixture
def broker():
    return MemoryStatusBroker()


@pytest.fixture
def client():
    from cafe_orders.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def order_payload():
    return {
        "items": [
            {
                "id": 1,
                "name": "Montana BBQ Hamburger Regular",
                "price": 280,
                "variant": "Beef",
                "quantity": 2,
            }
        ],
        "customerInfo": {"name": "Sarah", "phone": "555-123-4567"},
        "totalAmount": 560,
    }


async def make_order(session, verification_number=12345, status=OrderStatus.PENDING, **kwargs):
    now = utc_now()
    order = Order(
        verification_number=verification_number,
        status=status,
        total_amount=kwargs.pop("total_amount", 100.0),
        created_at=kwargs.pop("created_at", now),
        updated_at=kwargs.pop("updated_at", now),
        **kwargs,
    )
    order.items = [
        OrderItem(
            base_name="Fries",
            size_code="L",
            protein="Standard",
            quantity=1,
            unit_price=100.0,
            total_amount=100.0,
        )
    ]
    session.add(order)
    await session.commit()
    return order


async def make_menu(session):
    rows = [
        MenuItem(base_name="Montana BBQ Hamburger", size_code="R", protein="Beef", price=280),
        MenuItem(base_name="Montana BBQ Hamburger", size_code="R", protein="Chicken", price=260),
        MenuItem(base_name="Montana BBQ Hamburger", size_code="L", protein="Beef", price=340),
        MenuItem(base_name="Fries", size_code="L", protein="Standard", price=90),
        MenuItem(
            base_name="Crispy Wrap", size_code="R", protein="Falafel", price=190, is_available=False
        ),
    ]
    variants = [
        VariantOption(option_name="Chicken", display_order=1),
        VariantOption(option_name="Beef", display_order=2),
        VariantOption(option_name="Standard", display_order=3),
        VariantOption(option_name="Falafel", display_order=4),
    ]
    session.add_all(rows + variants)
    await session.commit()
    return rows
