"""
API Version 1 Router.

Combines all API endpoints under /api/v1 prefix.
"""

from fastapi import APIRouter

from storefront.api.v1.endpoints import admin, auth, cart, checkout, orders, shop

router = APIRouter()

# Include endpoint routers
router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(shop.router, prefix="/shop", tags=["Shop"])
router.include_router(cart.router, prefix="/cart", tags=["Cart"])
router.include_router(checkout.router, tags=["Checkout"])
router.include_router(orders.router, prefix="/orders", tags=["Orders"])
router.include_router(admin.router, prefix="/admin", tags=["Admin"])
