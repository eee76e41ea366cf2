"""
Pydantic Schemas for Request/Response Validation

Request bodies keep the field names the web client already sends
(``totalAmount``, ``customerInfo``, ``variant_name`` ...). Responses are
built from ORM rows with ``from_attributes`` so nothing past the data
access layer handles raw dictionaries.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


# =============================================================================
# ORDER REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single basket line as sent by the menu page."""
    menu_item_id: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("menu_item_id", "id"),
    )
    name: str = Field(..., min_length=1, max_length=100, examples=["Montana BBQ Hamburger Regular"])
    price: float = Field(..., gt=0, le=1000, examples=[280])
    variant: Optional[str] = Field(
        None,
        max_length=50,
        validation_alias=AliasChoices("variant", "protein"),
        examples=["Beef"],
    )
    quantity: int = Field(..., ge=1, le=99, examples=[2])

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Item name must not be blank")
        return v

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)


class CustomerInfo(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    items: List[OrderItemCreate] = Field(..., min_length=1)
    customer_info: Optional[CustomerInfo] = Field(None, alias="customerInfo")
    total_amount: float = Field(..., ge=0, alias="totalAmount", examples=[560])
    customer_notes: Optional[str] = Field(None, max_length=500)

    class Config:
        populate_by_name = True


class StatusUpdateRequest(BaseModel):
    """Staff request to move an order along its lifecycle."""
    order_id: int = Field(..., ge=1, description="Order number")
    status: str = Field(..., min_length=1, examples=["preparing"])


# =============================================================================
# ORDER RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(BaseModel):
    id: int
    order_number: int
    menu_item_id: Optional[int]
    base_name: str
    size_code: str
    protein: str
    quantity: int
    unit_price: float
    total_amount: float

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    order_number: int
    verification_number: int
    status: str
    total_amount: float
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v):
        return getattr(v, "value", v)

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    order: OrderResponse


class OrderDetailResponse(BaseModel):
    order: OrderResponse


class OrderListResponse(BaseModel):
    total: int
    orders: List[OrderResponse]


class StatusUpdateResponse(BaseModel):
    success: bool
    order: OrderResponse
    previous_status: Optional[str] = None


# =============================================================================
# MENU SCHEMAS
# =============================================================================

class MenuCard(BaseModel):
    """Customer-facing card: one (base name, size) with its proteins."""
    id: int
    name: str
    base_name: str
    size_code: str
    price: float
    min_price: float
    max_price: float
    variants: List[str]
    image: Optional[str] = None


class MenuListResponse(BaseModel):
    menu_items: List[MenuCard] = Field(..., alias="menuItems")

    class Config:
        populate_by_name = True


class MenuItemResponse(BaseModel):
    id: int
    base_name: str
    size_code: str
    protein: str
    price: float
    description: Optional[str]
    image_url: Optional[str]
    is_available: bool
    stock_quantity: Optional[int]

    class Config:
        from_attributes = True


class MenuItemListResponse(BaseModel):
    success: bool = True
    menu_items: List[MenuItemResponse] = Field(..., alias="menuItems")
    total_items: int = Field(..., alias="totalItems")

    class Config:
        populate_by_name = True


class MenuItemCreate(BaseModel):
    base_name: str = Field(..., min_length=1, max_length=100)
    size_code: str = Field(default="", pattern="^[RL]?$")
    protein: str = Field(..., min_length=1, max_length=50)
    price: float = Field(..., gt=0)
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    is_available: bool = True
    stock_quantity: Optional[int] = Field(None, ge=0)


class MenuItemUpdate(BaseModel):
    """Partial update; at least one mutable field must be present."""
    id: int = Field(..., ge=1)
    price: Optional[float] = Field(None, gt=0)
    is_available: Optional[bool] = None
    description: Optional[str] = None
    stock_quantity: Optional[int] = Field(None, ge=0)


class MenuItemMutationResponse(BaseModel):
    success: bool = True
    menu_item: MenuItemResponse = Field(..., alias="menuItem")

    class Config:
        populate_by_name = True


class MenuPriceUpdate(BaseModel):
    """Card-level edit: ``name`` is the display name, e.g. ``"Fries Large"``."""
    id: int
    name: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., gt=0)


class VariantCreate(BaseModel):
    variant_name: str = Field(..., min_length=1, max_length=50)


class VariantResponse(BaseModel):
    id: int
    option_name: str
    is_active: bool
    display_order: int

    class Config:
        from_attributes = True


class VariantListResponse(BaseModel):
    variants: List[VariantResponse]


class ActionResponse(BaseModel):
    success: bool
    message: str


# =============================================================================
# SHOP STATUS SCHEMAS
# =============================================================================

class ShopStatusResponse(BaseModel):
    is_open: bool = Field(..., alias="isOpen")
    status: str
    shop_name: str = Field(..., alias="shopName")
    message: Optional[str] = None
    is_taking_orders: bool = Field(..., alias="isTakingOrders")
    opening_time: Optional[str] = Field(None, alias="openingTime")
    closing_time: Optional[str] = Field(None, alias="closingTime")
    phone: Optional[str] = None
    address: Optional[str] = None
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")

    class Config:
        populate_by_name = True


class ShopStatusAction(BaseModel):
    action: Literal["toggle_shop", "toggle_orders"] = "toggle_shop"
    status: Optional[Literal["open", "closed"]] = None
    is_taking_orders: Optional[bool] = None


class ShopSettingsUpdate(BaseModel):
    shop_name: Optional[str] = Field(None, max_length=100)
    opening_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}(:\d{2})?$")
    closing_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}(:\d{2})?$")
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=255)
    shop_message: Optional[str] = None
    closed_message: Optional[str] = None


# =============================================================================
# LIVE STATUS EVENTS
# =============================================================================

class OrderStatusEvent(BaseModel):
    """Published whenever an order row changes status."""
    event: Literal["order_status"] = "order_status"
    order_number: int
    status: str
    total_amount: Optional[float] = None
    updated_at: datetime


class ShopStatusEvent(BaseModel):
    """Published whenever the shop singleton changes."""
    event: Literal["shop_status"] = "shop_status"
    is_open: bool
    status: str
    is_taking_orders: bool
    message: Optional[str] = None
    updated_at: datetime


# =============================================================================
# MISC
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    status_broker: str
    timestamp: datetime
