"""
Stock Ledger - serialized check-and-decrement of product quantities.
"""

from collections.abc import Iterable
from typing import Protocol

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import InsufficientStockError, ProductNotFoundError
from storefront.models.shop import Product


class StockRequest(Protocol):
    product_id: int
    quantity: int
    name: str


def _merge(items: Iterable[StockRequest]) -> dict[int, tuple[str, int]]:
    """Collapse requests per product, keeping first-seen order."""
    merged: dict[int, tuple[str, int]] = {}
    for item in items:
        name, quantity = merged.get(item.product_id, (item.name, 0))
        merged[item.product_id] = (name, quantity + item.quantity)
    return merged


class StockLedger:
    """
    Inventory guard for checkout.

    ``ensure_stock`` is an advisory pre-flight check. ``decrement_stock`` is
    the authoritative operation: it locks each product row, re-checks the
    quantity and subtracts, all in one transaction.

    Usage:
        ledger = StockLedger(db_session)
        await ledger.ensure_stock(cart.items)
        await ledger.decrement_stock(cart.items)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.db = db

    async def ensure_stock(self, items: Iterable[StockRequest]) -> None:
        """
        Verify every requested quantity is on hand.

        Raises:
            InsufficientStockError: For the first product that falls short
        """
        requested = _merge(items)
        if not requested:
            return

        query = select(Product.id, Product.name, Product.quantity).where(
            Product.id.in_(requested)
        )
        result = await self.db.execute(query)
        on_hand = {row.id: (row.name, row.quantity) for row in result}

        for product_id, (name, quantity) in requested.items():
            current_name, available = on_hand.get(product_id, (name, 0))
            if available < quantity:
                raise InsufficientStockError(current_name, available, quantity)

    async def decrement_stock(self, items: Iterable[StockRequest]) -> None:
        """
        Atomically subtract requested quantities.

        Rows are locked in ascending id order so that concurrent checkouts
        touching the same products cannot deadlock. Any shortfall rolls back
        every decrement made in this call. On success the transaction is
        committed.

        Raises:
            InsufficientStockError: If any product no longer has enough stock
            ProductNotFoundError: If a product was deleted meanwhile
        """
        requested = _merge(items)

        try:
            for product_id in sorted(requested):
                name, quantity = requested[product_id]
                query = (
                    select(Product)
                    .where(Product.id == product_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                result = await self.db.execute(query)
                product = result.scalar_one_or_none()

                if product is None:
                    raise ProductNotFoundError(f"{name} is no longer available.")
                if product.quantity < quantity:
                    raise InsufficientStockError(product.name, product.quantity, quantity)

                product.quantity -= quantity

            await self.db.flush()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.warning(f"Stock decrement rolled back for products {sorted(requested)}")
            raise

        logger.info(f"Stock decremented for products {sorted(requested)}")
