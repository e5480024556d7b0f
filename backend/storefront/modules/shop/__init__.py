"""
Shop Module - E-commerce functionality.

Features:
- Product catalog, reviews and wishlists
- Session shopping cart
- Stock ledger with atomic decrements
- Checkout orchestration and order store
"""

from storefront.modules.shop.cart import CartService
from storefront.modules.shop.ledger import StockLedger
from storefront.modules.shop.service import ShopService

__all__ = [
    "ShopService",
    "CartService",
    "StockLedger",
]
