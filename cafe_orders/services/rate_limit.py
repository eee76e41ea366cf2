"""
Order Creation Rate Limiter

slowapi ``Limiter`` keyed by the client's ``X-Client-Id`` header, falling
back to the remote address. The moving-window strategy counts attempts in
the trailing window. Counters live in the configured ``limits`` storage,
which expires them with the window; the default in-memory storage is per
process, so the limit is advisory across workers.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from cafe_orders.core.config import get_settings
from cafe_orders.core.errors import RateLimitError

logger = logging.getLogger(__name__)

CLIENT_ID_HEADER = "x-client-id"


def client_key(request: Request) -> str:
    """Opaque client token: ``X-Client-Id`` if sent, else the remote address."""
    client_id = request.headers.get(CLIENT_ID_HEADER)
    if client_id and client_id.strip():
        return client_id.strip()
    return get_remote_address(request)


def order_rate_limit() -> str:
    """Limit string for order creation, e.g. ``5/60 seconds``."""
    settings = get_settings()
    return (
        f"{settings.order_rate_limit_max_attempts}"
        f"/{settings.order_rate_limit_window_seconds} seconds"
    )


order_limiter = Limiter(
    key_func=client_key,
    strategy="moving-window",
    storage_uri=get_settings().rate_limit_storage_uri,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render slowapi rejections in the service error envelope."""
    logger.warning(
        f"Order rate limit exceeded for client {client_key(request)} ({exc.detail})"
    )
    error = RateLimitError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())
