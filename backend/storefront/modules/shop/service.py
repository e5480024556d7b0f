"""
Shop Service - Catalog, order store, reviews and wishlist.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import InvalidOrderStatusError, ProductNotFoundError
from storefront.core.session import CartLineItem
from storefront.models.shop import (
    Order,
    OrderStatus,
    PaymentMethod,
    Product,
    ProductReview,
    WishlistEntry,
)
from storefront.models.user import User


class ShopService:
    """
    Service for managing products, orders, reviews and wishlists.

    Usage:
        shop = ShopService(db_session)
        products = await shop.get_products(category="Fruits")
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize shop service with database session."""
        self.db = db

    # ==================== Products ====================

    async def get_products(self, category: str | None = None) -> list[Product]:
        """Get products, optionally filtered by category."""
        query = select(Product).order_by(Product.id)
        if category:
            query = query.where(Product.category == category)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_categories(self) -> list[str]:
        query = (
            select(Product.category)
            .where(Product.category.is_not(None))
            .distinct()
            .order_by(Product.category)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_product(self, product_id: int) -> Product | None:
        """Get product by id."""
        return await self.db.get(Product, product_id)

    async def create_product(
        self,
        name: str,
        price: Decimal,
        quantity: int = 0,
        category: str | None = None,
        image: str | None = None,
    ) -> Product:
        """Create new product."""
        product = Product(
            name=name,
            price=price,
            quantity=quantity,
            category=category,
            image=image,
        )
        self.db.add(product)
        await self.db.flush()
        return product

    async def update_product(self, product_id: int, **fields: Any) -> Product:
        """
        Update editable product fields.

        Fields left as ``None`` are not touched.
        """
        product = await self.get_product(product_id)
        if not product:
            raise ProductNotFoundError()

        for field in ("name", "price", "category", "image", "quantity"):
            value = fields.get(field)
            if value is not None:
                setattr(product, field, value)

        await self.db.flush()
        return product

    async def delete_product(self, product_id: int) -> None:
        product = await self.get_product(product_id)
        if not product:
            raise ProductNotFoundError()
        await self.db.delete(product)
        await self.db.flush()

    # ==================== Orders ====================

    async def create_order(
        self,
        user_id: int,
        items: list[CartLineItem],
        subtotal: Decimal,
        tax: Decimal,
        total: Decimal,
        shipping_address: str,
        payment_method: PaymentMethod,
        status: OrderStatus | None = None,
        payment_reference: str | None = None,
    ) -> Order:
        """
        Persist a completed purchase.

        Line items are stored as a snapshot and never re-derived from the
        current catalog.
        """
        order = Order(
            user_id=user_id,
            items=[item.model_dump(mode="json") for item in items],
            subtotal=subtotal,
            tax=tax,
            total=total,
            shipping_address=shipping_address,
            payment_method=payment_method,
            status=status or payment_method.settled_status,
            payment_reference=payment_reference,
        )
        self.db.add(order)
        await self.db.flush()
        return order

    async def count_orders_by_user(self, user_id: int, up_to_order_id: int | None = None) -> int:
        query = select(func.count(Order.id)).where(Order.user_id == user_id)
        if up_to_order_id is not None:
            query = query.where(Order.id <= up_to_order_id)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def get_orders_by_user(self, user_id: int) -> list[Order]:
        """Get a user's orders, newest first."""
        query = (
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_all_orders(self) -> list[tuple[Order, User | None]]:
        """Get every order with its customer, newest first."""
        query = (
            select(Order, User)
            .outerjoin(User, User.id == Order.user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        result = await self.db.execute(query)
        return [(row.Order, row.User) for row in result]

    async def get_order(self, order_id: int) -> Order | None:
        return await self.db.get(Order, order_id)

    async def get_order_by_payment_reference(self, payment_reference: str) -> Order | None:
        result = await self.db.execute(
            select(Order).where(Order.payment_reference == payment_reference)
        )
        return result.scalar_one_or_none()

    async def update_order_status(self, order_id: int, status: Any) -> Order | None:
        """
        Move an order to another status.

        Raises:
            InvalidOrderStatusError: If status is outside OrderStatus
        """
        try:
            next_status = OrderStatus(status)
        except ValueError:
            raise InvalidOrderStatusError() from None

        order = await self.get_order(order_id)
        if not order:
            return None

        order.status = next_status
        await self.db.flush()
        return order

    # ==================== Reviews ====================

    async def add_review(
        self,
        product_id: int,
        user_id: int,
        rating: Any = 5,
        comment: str = "",
    ) -> ProductReview:
        """Add a review; rating is clamped to 1-5."""
        if not await self.get_product(product_id):
            raise ProductNotFoundError()

        review = ProductReview(
            product_id=product_id,
            user_id=user_id,
            rating=clamp_rating(rating),
            comment=(comment or "").strip(),
        )
        self.db.add(review)
        await self.db.flush()
        return review

    async def get_reviews(self, product_id: int) -> list[tuple[ProductReview, str | None]]:
        """Get reviews for a product with reviewer names, newest first."""
        query = (
            select(ProductReview, User.username)
            .outerjoin(User, User.id == ProductReview.user_id)
            .where(ProductReview.product_id == product_id)
            .order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
        )
        result = await self.db.execute(query)
        return [(row.ProductReview, row.username) for row in result]

    async def get_review_summary(self, product_ids: list[int]) -> dict[int, dict[str, float]]:
        """Average rating and review count per product."""
        if not product_ids:
            return {}

        query = (
            select(
                ProductReview.product_id,
                func.avg(ProductReview.rating).label("avg_rating"),
                func.count(ProductReview.id).label("review_count"),
            )
            .where(ProductReview.product_id.in_(product_ids))
            .group_by(ProductReview.product_id)
        )
        result = await self.db.execute(query)
        return {
            row.product_id: {
                "avg_rating": round(float(row.avg_rating), 2),
                "review_count": int(row.review_count),
            }
            for row in result
        }

    # ==================== Wishlist ====================

    async def add_to_wishlist(self, user_id: int, product_id: int) -> None:
        """Save a product; adding it twice is a no-op."""
        if not await self.get_product(product_id):
            raise ProductNotFoundError()

        dialect = self.db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(WishlistEntry)
            .values(user_id=user_id, product_id=product_id)
            .on_conflict_do_nothing(index_elements=["user_id", "product_id"])
        )
        await self.db.execute(stmt)

    async def remove_from_wishlist(self, user_id: int, product_id: int) -> None:
        stmt = delete(WishlistEntry).where(
            WishlistEntry.user_id == user_id,
            WishlistEntry.product_id == product_id,
        )
        await self.db.execute(stmt)

    async def get_wishlist(self, user_id: int) -> list[Product]:
        query = (
            select(Product)
            .join(WishlistEntry, WishlistEntry.product_id == Product.id)
            .where(WishlistEntry.user_id == user_id)
            .order_by(WishlistEntry.created_at.desc(), WishlistEntry.id.desc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())


def clamp_rating(value: Any) -> int:
    try:
        rating = int(value)
    except (TypeError, ValueError):
        rating = 0
    return min(5, max(1, rating))


def serialize_product(product: Product, summary: dict[str, float] | None = None) -> dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "price": float(product.price),
        "category": product.category,
        "image": product.image,
        "quantity": product.quantity,
        "in_stock": product.is_in_stock,
        "avg_rating": (summary or {}).get("avg_rating"),
        "review_count": (summary or {}).get("review_count", 0),
    }


def serialize_order(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "status": order.status.value,
        "payment_method": order.payment_method.value,
        "items": order.items,
        "subtotal": float(order.subtotal),
        "tax": float(order.tax),
        "total": float(order.total),
        "shipping_address": order.shipping_address,
        "created_at": order.created_at.isoformat(),
    }
