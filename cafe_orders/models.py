"""
SQLAlchemy Database Models

Tables:
- menu_items: one row per (base name, size, protein) combination
- variant_options: the global protein list shared by every menu item
- orders: customer orders with verification code and status
- order_items: price/name snapshots owned by an order
- shop_status: singleton open/closed record (id = 1)
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from cafe_orders.database import Base


SHOP_STATUS_ID = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow, in lifecycle order."""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COLLECTED = "collected"  # Never persisted, rewritten to COMPLETED
    COMPLETED = "completed"


class SizeCode(str, enum.Enum):
    REGULAR = "R"
    LARGE = "L"
    NONE = ""


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class MenuItem(Base):
    """
    A single orderable combination of base item, size and protein.

    Orders copy name and price at placement time; nothing here is
    referenced live by an order.
    """
    __tablename__ = "menu_items"
    __table_args__ = (
        UniqueConstraint("base_name", "size_code", "protein", name="uq_menu_item_combo"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    base_name = Column(String(100), nullable=False, index=True)
    size_code = Column(String(1), nullable=False, default="")
    protein = Column(String(50), nullable=False)
    price = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    stock_quantity = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    @property
    def display_name(self) -> str:
        if self.size_code == SizeCode.REGULAR.value:
            return f"{self.base_name} Regular"
        if self.size_code == SizeCode.LARGE.value:
            return f"{self.base_name} Large"
        return self.base_name

    def __repr__(self):
        return f"<MenuItem #{self.id} - {self.display_name} - {self.protein}>"


class VariantOption(Base):
    """Global protein/topping option offered on every menu item."""
    __tablename__ = "variant_options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    option_name = Column(String(50), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    def __repr__(self):
        return f"<VariantOption {self.option_name}>"


class Order(Base):
    """
    Customer order.

    ``order_number`` is the sequential display identity. Together with
    ``verification_number`` it is the credential for the tracking view.
    """
    __tablename__ = "orders"
    __table_args__ = (
        # A code identifies at most one in-flight order
        Index(
            "uq_orders_active_verification",
            "verification_number",
            unique=True,
            postgresql_where=text("status != 'completed'"),
            sqlite_where=text("status != 'completed'"),
        ),
    )

    order_number = Column(Integer, primary_key=True, autoincrement=True)
    verification_number = Column(Integer, nullable=False, index=True)

    status = Column(
        Enum(OrderStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    total_amount = Column(Float, nullable=False)

    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    customer_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    def __repr__(self):
        return f"<Order #{self.order_number} - {self.status.value} - {self.total_amount:.2f}>"


class OrderItem(Base):
    """Line item snapshot: names and prices as they were at order time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(
        Integer,
        ForeignKey("orders.order_number", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    menu_item_id = Column(Integer, nullable=True)
    base_name = Column(String(100), nullable=False)
    size_code = Column(String(1), nullable=False, default="")
    protein = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_amount = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.quantity}x {self.base_name} {self.size_code} ({self.protein})>"


class ShopStatus(Base):
    """Singleton shop record; every read and write targets ``SHOP_STATUS_ID``."""
    __tablename__ = "shop_status"

    id = Column(Integer, primary_key=True, default=SHOP_STATUS_ID)
    current_status = Column(String(10), nullable=False, default="open")
    shop_name = Column(String(100), nullable=False)
    display_message = Column(Text, nullable=True)
    closed_message = Column(Text, nullable=True)
    is_taking_orders = Column(Boolean, nullable=False, default=True)
    opening_time = Column(String(8), nullable=True)
    closing_time = Column(String(8), nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(String(255), nullable=True)
    last_updated = Column(DateTime(timezone=True), default=utc_now)
    updated_by = Column(String(50), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.current_status == "open"

    def __repr__(self):
        return f"<ShopStatus {self.current_status} taking_orders={self.is_taking_orders}>"
