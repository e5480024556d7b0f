"""
Shop models for e-commerce functionality.

Includes:
- Products with on-hand inventory
- Orders with an immutable line-item snapshot
- Reviews
- Wishlist entries
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.core.database import Base

if TYPE_CHECKING:
    from storefront.models.user import User


class OrderStatus(str, PyEnum):
    """Order processing status."""

    PAID = "PAID"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"


class PaymentMethod(str, PyEnum):
    """Supported ways to pay for an order."""

    CASH = "cash"
    CARD = "card"
    NETS = "nets"
    PAYPAL = "paypal"
    WALLET = "wallet"

    @classmethod
    def resolve(cls, value: Any) -> "PaymentMethod":
        """Map form input to a method, falling back to card."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.CARD

    @property
    def settled_status(self) -> OrderStatus:
        """Status an order takes when this method settles."""
        if self is PaymentMethod.CASH:
            return OrderStatus.CASH_ON_DELIVERY
        return OrderStatus.PAID


class Product(Base):
    """Product for sale."""

    __tablename__ = "shop_products"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_product_quantity"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    category: Mapped[str | None] = mapped_column(String(100), index=True)
    image: Mapped[str | None] = mapped_column(String(500))

    # Inventory
    quantity: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    reviews: Mapped[list["ProductReview"]] = relationship(
        back_populates="product", cascade="all, delete-orphan"
    )

    @property
    def is_in_stock(self) -> bool:
        """Check if product is in stock."""
        return self.quantity > 0

    def __repr__(self) -> str:
        return f"<Product {self.id}: {self.name}>"


class Order(Base):
    """Customer order."""

    __tablename__ = "shop_orders"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    # Snapshot of cart line items at time of order
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    # Payment / fulfilment
    shipping_address: Mapped[str] = mapped_column(Text)
    payment_method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod))
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus))
    # Provider reference of the settled payment (NETS retrieval ref, PayPal order id)
    payment_reference: Mapped[str | None] = mapped_column(String(255), unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="orders")

    def __repr__(self) -> str:
        return f"<Order {self.id} ({self.status.value})>"


@event.listens_for(Order, "before_update")
def _guard_order_snapshot(mapper: Any, connection: Any, target: Order) -> None:
    """Only the status of a persisted order may change."""
    state = inspect(target)
    for attr in state.mapper.column_attrs:
        if attr.key == "status":
            continue
        if state.attrs[attr.key].history.has_changes():
            raise ValueError(f"Order.{attr.key} is immutable once created")


class ProductReview(Base):
    """Product review from customer."""

    __tablename__ = "shop_product_reviews"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("shop_products.id"))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))

    rating: Mapped[int] = mapped_column(Integer)  # 1-5
    comment: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="reviews")
    user: Mapped["User"] = relationship()


class WishlistEntry(Base):
    """Product saved by a user for later."""

    __tablename__ = "shop_wishlist"
    __table_args__ = (UniqueConstraint("user_id", "product_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    product_id: Mapped[int] = mapped_column(ForeignKey("shop_products.id", ondelete="CASCADE"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
