"""
Cart API Endpoints.

The cart lives in the visitor's session; every change returns the updated
contents and totals.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.security import require_user
from storefront.core.session import SessionState, SessionUser, get_session, render
from storefront.modules.shop.cart import CartService

router = APIRouter()


# ==================== Schemas ====================


class CartQuantityRequest(BaseModel):
    """Quantity as submitted by the client; bad values fall back to 1."""

    quantity: int | str | None = 1


# ==================== Cart ====================


@router.get("")
async def get_cart(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Get cart contents with live stock."""
    view = await CartService(db, session).view()
    return render(session, **view)


@router.post("/{product_id}")
async def add_to_cart(
    product_id: int,
    request: CartQuantityRequest,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Add item to cart."""
    cart_service = CartService(db, session)
    await cart_service.add_item(product_id, request.quantity)
    return render(session, **await cart_service.view())


@router.put("/{product_id}")
async def update_cart_item(
    product_id: int,
    request: CartQuantityRequest,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Update item quantity in cart."""
    cart_service = CartService(db, session)
    await cart_service.update_item(product_id, request.quantity)
    return render(session, **await cart_service.view())


@router.delete("/{product_id}")
async def remove_from_cart(
    product_id: int,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Remove item from cart."""
    cart_service = CartService(db, session)
    cart_service.remove_item(product_id)
    return render(session, **await cart_service.view())


@router.delete("")
async def clear_cart(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Clear all items from cart."""
    cart_service = CartService(db, session)
    cart_service.clear()
    return render(session, **await cart_service.view())
