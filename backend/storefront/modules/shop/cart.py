"""
Cart Service - Session-scoped shopping cart.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.exceptions import (
    CartItemNotFoundError,
    OutOfStockError,
    ProductNotFoundError,
)
from storefront.core.session import Cart, CartLineItem, CartTotals, SessionState
from storefront.models.shop import Product

CENT = Decimal("0.01")


def recompute_totals(cart: Cart, tax_rate: Decimal | None = None) -> CartTotals:
    """
    Recalculate cart totals from the cached line prices.

    Tax is rounded once, after summation.
    """
    rate = settings.tax_rate if tax_rate is None else tax_rate
    subtotal = sum((item.line_total for item in cart.items), Decimal("0")).quantize(CENT)
    tax = (subtotal * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    cart.totals = CartTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)
    return cart.totals


def get_cart(session: SessionState) -> Cart:
    """Return the session's cart, creating an empty one on first use."""
    if session.cart is None:
        session.cart = Cart()
    return session.cart


def clear_cart(session: SessionState) -> None:
    """Replace the session's cart with an empty one."""
    session.cart = Cart()


class CartService:
    """
    Shopping cart bound to one visitor session.

    Prices, names and images are captured when a product is added; only
    availability is looked up live.

    Usage:
        cart = CartService(db_session, session_state)
        await cart.add_item(product_id, quantity=2)
    """

    def __init__(self, db: AsyncSession, session: SessionState) -> None:
        self.db = db
        self.session = session

    @property
    def cart(self) -> Cart:
        return get_cart(self.session)

    async def _available(self, product_id: int) -> tuple[Product | None, int]:
        query = select(Product).where(Product.id == product_id)
        result = await self.db.execute(query)
        product = result.scalar_one_or_none()
        if product is None:
            return None, 0
        return product, max(0, product.quantity)

    async def add_item(self, product_id: int, quantity: Any = 1) -> Cart:
        """
        Add product to cart or merge into the existing line.

        Quantity is clamped to the stock on hand.

        Raises:
            ProductNotFoundError: Unknown product
            OutOfStockError: Product has no stock left
        """
        requested = _coerce_quantity(quantity)
        product, available = await self._available(product_id)

        if product is None:
            raise ProductNotFoundError()
        if not available:
            raise OutOfStockError()

        accepted = min(requested, available)
        if available < requested:
            self.session.flash("error", f"Only {available} unit(s) left in stock.")

        cart = self.cart
        existing = cart.find(product.id)
        if existing:
            existing.quantity = min(existing.quantity + accepted, available)
        else:
            cart.items.append(
                CartLineItem(
                    product_id=product.id,
                    name=product.name,
                    price=Decimal(product.price),
                    image=product.image,
                    quantity=accepted,
                )
            )

        recompute_totals(cart)
        self.session.flash("success", f"{product.name} added to cart.")
        return cart

    async def update_item(self, product_id: int, quantity: Any) -> Cart:
        """
        Set a line's quantity, clamped to live stock.

        A product that is gone or sold out is dropped from the cart.
        """
        requested = _coerce_quantity(quantity)
        cart = self.cart
        item = cart.find(product_id)

        if item is None:
            raise CartItemNotFoundError()

        product, available = await self._available(product_id)

        if product is None or available == 0:
            cart.items = [i for i in cart.items if i.product_id != product_id]
            self.session.flash("error", "This product is no longer available.")
        elif available < requested:
            item.quantity = available
            self.session.flash("error", f"Only {available} unit(s) left. Quantity adjusted.")
        else:
            item.quantity = requested
            self.session.flash("success", "Cart updated.")

        recompute_totals(cart)
        return cart

    def remove_item(self, product_id: int) -> Cart:
        """Remove item from cart."""
        cart = self.cart
        cart.items = [item for item in cart.items if item.product_id != product_id]
        recompute_totals(cart)
        self.session.flash("success", "Item removed from cart.")
        return cart

    def clear(self) -> Cart:
        """Clear all items from cart."""
        clear_cart(self.session)
        self.session.flash("success", "Cart cleared.")
        return self.cart

    async def view(self) -> dict[str, Any]:
        """
        Cart contents annotated with live available stock.

        The stored quantities are left untouched so the client can warn the
        user before checkout.
        """
        cart = self.cart
        recompute_totals(cart)

        product_ids = [item.product_id for item in cart.items]
        stock: dict[int, int] = {}
        if product_ids:
            query = select(Product.id, Product.quantity).where(Product.id.in_(product_ids))
            result = await self.db.execute(query)
            stock = {row.id: max(0, row.quantity) for row in result}

        items = []
        for item in cart.items:
            available = stock.get(item.product_id, 0)
            if available < item.quantity:
                logger.debug(f"Cart line {item.product_id} exceeds stock ({available})")
            items.append(
                {
                    **serialize_line(item),
                    "available": available,
                }
            )

        return {
            "items": items,
            "totals": serialize_totals(cart.totals),
            "item_count": cart.item_count,
        }


def _coerce_quantity(value: Any) -> int:
    """Form quantities below 1 or unparsable fall back to 1."""
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1


def serialize_line(item: CartLineItem) -> dict[str, Any]:
    return {
        "product_id": item.product_id,
        "name": item.name,
        "price": float(item.price),
        "image": item.image,
        "quantity": item.quantity,
        "total": float(item.line_total),
    }


def serialize_totals(totals: CartTotals) -> dict[str, float]:
    return {
        "subtotal": float(totals.subtotal),
        "tax": float(totals.tax),
        "total": float(totals.total),
    }
