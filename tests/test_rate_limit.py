import time

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from starlette.requests import Request

from cafe_orders.services.rate_limit import client_key, order_limiter, order_rate_limit


def make_request(headers=None, host="10.0.0.7"):
    return Request({
        "type": "http",
        "method": "POST",
        "path": "/api/orders",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (host, 51000),
    })


def test_key_prefers_client_id_header():
    assert client_key(make_request({"X-Client-Id": "kiosk-3"})) == "kiosk-3"


def test_key_falls_back_to_remote_address():
    assert client_key(make_request()) == "10.0.0.7"
    assert client_key(make_request({"X-Client-Id": "  "})) == "10.0.0.7"


def test_order_limit_built_from_settings():
    assert order_rate_limit() == "5/60 seconds"
    item = parse(order_rate_limit())
    assert item.amount == 5
    assert item.get_expiry() == 60


def test_limiter_uses_moving_window():
    assert isinstance(order_limiter.limiter, MovingWindowRateLimiter)


def test_window_slides_and_expires():
    strategy = MovingWindowRateLimiter(MemoryStorage())
    item = parse("2/1 second")

    assert strategy.hit(item, "client-a")
    assert strategy.hit(item, "client-a")
    assert not strategy.hit(item, "client-a")
    assert strategy.hit(item, "client-b")

    time.sleep(1.1)

    assert strategy.get_window_stats(item, "client-a")[1] == 2
    assert strategy.hit(item, "client-a")
