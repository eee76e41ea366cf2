"""
FastAPI Application Entry Point

Cafe Orders - customer ordering, order tracking and staff dashboard API.

Endpoints:
    - GET  /api/menu: Customer menu cards
    - PUT  /api/menu: Update a card's price (admin)
    - GET/POST/PUT/DELETE /api/menu-items: Menu rows (writes are admin)
    - GET/POST/DELETE /api/menu/variants: Global protein list (writes are admin)
    - GET  /api/orders: List orders (admin)
    - POST /api/orders: Place an order
    - GET  /api/order-tracking: Look up an order by number + verification code
    - PUT  /api/order-tracking: Change order status (admin)
    - GET/POST/PUT /api/shop-status: Shop open/closed state (writes are admin)
    - WS   /ws/orders/{order_number}: Live tracking for one order
    - WS   /ws/orders: Live feed of every order (admin)
    - WS   /ws/shop-status: Live shop status
    - GET  /health: System health check
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_orders import repository
from cafe_orders.core.config import get_settings, setup_logging
from cafe_orders.core.errors import NotFoundError, ServiceError, ValidationError
from cafe_orders.database import async_session_maker, engine, get_db, init_db
from cafe_orders.models import ShopStatus
from cafe_orders.schemas import (
    ActionResponse,
    ErrorResponse,
    HealthResponse,
    MenuItemCreate,
    MenuItemListResponse,
    MenuItemMutationResponse,
    MenuItemResponse,
    MenuItemUpdate,
    MenuListResponse,
    MenuPriceUpdate,
    OrderCreate,
    OrderCreateResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatusEvent,
    ShopSettingsUpdate,
    ShopStatusAction,
    ShopStatusEvent,
    ShopStatusResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
    VariantCreate,
    VariantListResponse,
    VariantResponse,
)
from cafe_orders.services import catalog, lifecycle, placement, shop
from cafe_orders.services.auth import extract_bearer_token, is_admin_token, verify_admin_token
from cafe_orders.services.notifier import (
    ALL_ORDERS_CHANNEL,
    SHOP_STATUS_CHANNEL,
    LiveFeed,
    OrderStatusWatcher,
    get_status_broker,
    order_event,
    shop_event,
)
from cafe_orders.services.rate_limit import order_limiter, order_rate_limit, rate_limit_exceeded_handler

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

# Custom close code: order lookup failed
WS_ORDER_NOT_FOUND = 4404
WS_UNAUTHORIZED = 4401


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    broker = get_status_broker()
    logger.info(f"✅ Status Broker: {broker.provider_name}")

    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"⚠️ Missing config: {missing}")

    logger.info("✅ Application ready!")

    yield

    logger.info("Shutting down...")
    await broker.close()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant ordering backend: menu, order placement, live order "
        "tracking and the staff dashboard API."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = order_limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# =============================================================================
# DEPENDENCIES & HELPERS
# =============================================================================

async def require_admin(authorization: Optional[str] = Header(None)) -> str:
    """Admin guard shared by every mutating staff endpoint."""
    return verify_admin_token(authorization)


def shop_response(shop_status: ShopStatus) -> ShopStatusResponse:
    return ShopStatusResponse(
        is_open=shop_status.is_open,
        status=shop_status.current_status,
        shop_name=shop_status.shop_name,
        message=shop_status.display_message if shop_status.is_open else shop_status.closed_message,
        is_taking_orders=shop_status.is_taking_orders,
        opening_time=shop_status.opening_time,
        closing_time=shop_status.closing_time,
        phone=shop_status.phone,
        address=shop_status.address,
        last_updated=shop_status.last_updated,
    )


def completion_path(order_number: int, verification_number: int) -> str:
    return (
        f"/customer/order-completed?orderNumber={order_number}"
        f"&verificationNumber={verification_number}"
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify database and status broker are reachable."""

    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    broker = get_status_broker()
    broker_status = "healthy" if await broker.health_check() else "unhealthy"

    overall = "operational" if db_status == broker_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        status_broker=f"{broker.provider_name}: {broker_status}",
        timestamp=datetime.now(),
    )


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.get(
    "/api/menu",
    response_model=MenuListResponse,
    tags=["Menu"],
    summary="Customer Menu",
)
async def get_menu(db: AsyncSession = Depends(get_db)) -> MenuListResponse:
    """Available items grouped by (base name, size) with their proteins."""
    cards = await catalog.list_menu(db)
    return MenuListResponse(menu_items=cards)


@app.put(
    "/api/menu",
    response_model=ActionResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Menu"],
)
async def update_menu_card(
    data: MenuPriceUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> ActionResponse:
    """Set the price of every protein variant of one menu card."""
    await catalog.update_menu_price(db, data.name, data.price)
    return ActionResponse(success=True, message="Menu item updated successfully")


@app.get(
    "/api/menu-items",
    response_model=MenuItemListResponse,
    tags=["Menu"],
)
async def list_menu_items(
    base_name: Optional[str] = Query(None),
    size_code: Optional[str] = Query(None, pattern="^[RL]?$"),
    db: AsyncSession = Depends(get_db),
) -> MenuItemListResponse:
    """Individual menu rows, for the management screen."""
    items = await catalog.list_menu_items(db, base_name=base_name, size_code=size_code)
    return MenuItemListResponse(
        menu_items=[MenuItemResponse.model_validate(item) for item in items],
        total_items=len(items),
    )


@app.post(
    "/api/menu-items",
    response_model=MenuItemMutationResponse,
    responses={401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Menu"],
)
async def create_menu_item(
    data: MenuItemCreate,
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> MenuItemMutationResponse:
    item = await catalog.create_menu_item(db, data)
    return MenuItemMutationResponse(menu_item=MenuItemResponse.model_validate(item))


@app.put(
    "/api/menu-items",
    response_model=MenuItemMutationResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Menu"],
)
async def update_menu_item(
    data: MenuItemUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> MenuItemMutationResponse:
    """Change price, availability, description or stock of one row."""
    item = await catalog.update_menu_item(db, data)
    return MenuItemMutationResponse(menu_item=MenuItemResponse.model_validate(item))


@app.delete(
    "/api/menu-items",
    response_model=ActionResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Menu"],
)
async def delete_menu_item(
    id: int = Query(..., ge=1),
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> ActionResponse:
    await catalog.delete_menu_item(db, id)
    return ActionResponse(success=True, message="Menu item deleted successfully")


@app.get(
    "/api/menu/variants",
    response_model=VariantListResponse,
    tags=["Menu"],
)
async def list_variants(db: AsyncSession = Depends(get_db)) -> VariantListResponse:
    variants = await catalog.list_variants(db)
    return VariantListResponse(
        variants=[VariantResponse.model_validate(v) for v in variants]
    )


@app.post(
    "/api/menu/variants",
    response_model=ActionResponse,
    responses={401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Menu"],
)
async def add_variant(
    data: VariantCreate,
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> ActionResponse:
    """Add a protein to the global list shared by every item."""
    await catalog.add_variant(db, data.variant_name)
    return ActionResponse(success=True, message="Variant added to global list successfully")


@app.delete(
    "/api/menu/variants",
    response_model=ActionResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Menu"],
)
async def remove_variant(
    variant_name: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> ActionResponse:
    """Remove a protein from the global list; past orders keep their snapshot."""
    await catalog.remove_variant(db, variant_name)
    return ActionResponse(success=True, message="Variant removed from global list successfully")


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    active: bool = Query(False, description="Only orders that are not completed"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> OrderListResponse:
    """Orders newest first; ``active=true`` hides completed ones."""
    total, orders = await lifecycle.list_orders(db, active_only=active, skip=skip, limit=limit)
    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Place Order",
)
@order_limiter.limit(order_rate_limit)
async def create_order(
    order_data: OrderCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> OrderCreateResponse:
    """
    Place an order from the customer basket.

    The response carries ``order_number`` and ``verification_number``;
    together they are the credential for the tracking endpoints.
    """
    logger.info(f"Creating order: {len(order_data.items)} item(s), total {order_data.total_amount}")
    order = await placement.place_order(db, order_data)
    return OrderCreateResponse(order=OrderResponse.model_validate(order))


# =============================================================================
# ORDER TRACKING ENDPOINTS
# =============================================================================

@app.get(
    "/api/order-tracking",
    response_model=OrderDetailResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Tracking"],
)
async def track_order(
    order_number: Optional[int] = Query(None, ge=1),
    verification_number: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    """Order with items, for the holder of the (number, code) pair."""
    if order_number is None or verification_number is None:
        raise ValidationError("Both order_number and verification_number are required")

    order = await placement.track_order(db, order_number, verification_number)
    if order is None:
        raise NotFoundError(
            "Order not found. Please check your order number and verification code."
        )
    return OrderDetailResponse(order=OrderResponse.model_validate(order))


@app.put(
    "/api/order-tracking",
    response_model=StatusUpdateResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    tags=["Tracking"],
    summary="Update Order Status",
)
async def update_order_status(
    data: StatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> StatusUpdateResponse:
    """Move an order forward; ``collected`` is stored as ``completed``."""
    result = await lifecycle.transition(db, data.order_id, data.status)
    if not result.success:
        raise result.error

    return StatusUpdateResponse(
        success=True,
        order=OrderResponse.model_validate(result.order),
        previous_status=result.previous_status.value if result.previous_status else None,
    )


# =============================================================================
# SHOP STATUS ENDPOINTS
# =============================================================================

@app.get(
    "/api/shop-status",
    response_model=ShopStatusResponse,
    tags=["Shop"],
)
async def get_shop_status(db: AsyncSession = Depends(get_db)) -> ShopStatusResponse:
    return shop_response(await shop.get_shop_status(db))


@app.post(
    "/api/shop-status",
    response_model=ShopStatusResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    tags=["Shop"],
)
async def toggle_shop_status(
    data: ShopStatusAction,
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> ShopStatusResponse:
    """``toggle_shop`` sets open/closed; ``toggle_orders`` sets order taking."""
    if data.action == "toggle_orders":
        updated = await shop.toggle_orders(db, data.is_taking_orders)
    else:
        updated = await shop.toggle_shop(db, data.status)
    return shop_response(updated)


@app.put(
    "/api/shop-status",
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    tags=["Shop"],
)
async def update_shop_settings(
    data: ShopSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: str = Depends(require_admin),
) -> dict[str, Any]:
    updated = await shop.update_shop_settings(db, data)
    return {
        "success": True,
        "settings": shop_response(updated).model_dump(mode="json", by_alias=True),
    }


# =============================================================================
# LIVE STATUS (WEBSOCKETS)
# =============================================================================

async def _fetch_order_events(order_number: int) -> list[OrderStatusEvent]:
    async with async_session_maker() as session:
        order = await repository.get_order(session, order_number)
        return [order_event(order)] if order else []


async def _fetch_active_order_events() -> list[OrderStatusEvent]:
    async with async_session_maker() as session:
        orders = await repository.list_orders(session, active_only=True)
        return [order_event(order) for order in orders]


async def _fetch_shop_events() -> list[ShopStatusEvent]:
    async with async_session_maker() as session:
        return [shop_event(await shop.get_shop_status(session))]


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _serve_feed(
    websocket: WebSocket,
    feed: LiveFeed,
    finished: Optional[asyncio.Event] = None,
) -> None:
    """Run ``feed`` until the client leaves or ``finished`` is set, then tear down."""
    await feed.start()
    waiters = {asyncio.create_task(_wait_for_disconnect(websocket))}
    if finished is not None:
        waiters.add(asyncio.create_task(finished.wait()))
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        await feed.close()
        for task in waiters:
            task.cancel()

    if finished is not None and finished.is_set():
        await websocket.close()


@app.websocket("/ws/orders/{order_number}")
async def order_tracking_feed(
    websocket: WebSocket,
    order_number: int,
    verification_number: int = Query(...),
) -> None:
    """
    Live status for one order.

    Sends an ``order_status`` message on every change, then one
    ``redirect`` message a few seconds after the order completes.
    """
    async with async_session_maker() as session:
        order = await placement.track_order(session, order_number, verification_number)
    if order is None:
        await websocket.close(code=WS_ORDER_NOT_FOUND)
        return

    await websocket.accept()
    finished = asyncio.Event()

    async def on_status(event: OrderStatusEvent) -> None:
        await websocket.send_json(event.model_dump(mode="json"))

    async def on_completed(event: OrderStatusEvent) -> None:
        await websocket.send_json({
            "event": "redirect",
            "order_number": order_number,
            "path": completion_path(order_number, verification_number),
        })
        finished.set()

    watcher = OrderStatusWatcher(
        get_status_broker(),
        order_number,
        fetch=lambda: _fetch_order_events(order_number),
        on_status=on_status,
        on_completed=on_completed,
    )
    await _serve_feed(websocket, watcher, finished)


@app.websocket("/ws/orders")
async def staff_orders_feed(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
) -> None:
    """Every order status change, for the staff dashboard."""
    if not is_admin_token(token or extract_bearer_token(authorization)):
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()

    async def on_change(event: OrderStatusEvent) -> None:
        await websocket.send_json(event.model_dump(mode="json"))

    feed = LiveFeed(
        get_status_broker(),
        ALL_ORDERS_CHANNEL,
        OrderStatusEvent,
        fetch=_fetch_active_order_events,
        on_change=on_change,
        key=lambda event: event.order_number,
    )
    await _serve_feed(websocket, feed)


@app.websocket("/ws/shop-status")
async def shop_status_feed(websocket: WebSocket) -> None:
    await websocket.accept()

    async def on_change(event: ShopStatusEvent) -> None:
        await websocket.send_json(event.model_dump(mode="json"))

    feed = LiveFeed(
        get_status_broker(),
        SHOP_STATUS_CHANNEL,
        ShopStatusEvent,
        fetch=_fetch_shop_events,
        on_change=on_change,
    )
    await _serve_feed(websocket, feed)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Service errors carry their own status code and message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    logger.info(f"{request.method} {request.url.path} invalid: {location} {message}")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": f"{location}: {message}" if location else message,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
