from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Integer, DateTime, Text, JSON, CheckConstraint
from datetime import datetime
from enum import Enum
from typing import Optional

class Base(DeclarativeBase):
    pass

class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED})

class Product(Base):
    """Catalog row. Owned by the catalog service; checkout only reads prices and moves stock."""
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Minor currency units (paise)
    price: Mapped[int] = mapped_column(Integer)
    sale_price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class CartItem(Base):
    __tablename__ = "cart_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    product_id: Mapped[int] = mapped_column(Integer)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    total_amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, index=True)
    gateway: Mapped[str] = mapped_column(String(30))
    # Correlation ids. merchant_transaction_id exists before any provider call;
    # the gateway_* columns are filled by whichever provider shape applies.
    merchant_transaction_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    receipt: Mapped[str] = mapped_column(String(100), unique=True)
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    gateway_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), index=True, nullable=True)
    gateway_signature: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_instrument: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # Address snapshot, decoupled from the user's address book
    shipping_address: Mapped[dict] = mapped_column(JSON)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Sum of refunds issued so far; status stays paid
    refunded_amount: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_refund_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES

    def items_total(self) -> int:
        return sum(item.unit_price * item.quantity for item in self.items)

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    # Product snapshot captured at order time (no FK to the live catalog)
    product_id: Mapped[int]
    quantity: Mapped[int]
    unit_price: Mapped[int] = mapped_column(Integer)
    product_name: Mapped[str] = mapped_column(String(200))
    product_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order: Mapped[Order] = relationship("Order", back_populates="items")
