"""
Orders API Endpoints.

Customer order history and admin order management.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.security import require_admin, require_user
from storefront.core.session import SessionState, SessionUser, get_session, render
from storefront.models.shop import OrderStatus
from storefront.modules.shop.service import ShopService, serialize_order
from storefront.modules.users.service import serialize_user

router = APIRouter()


# ==================== Schemas ====================


class OrderStatusRequest(BaseModel):
    status: str


# ==================== Customer ====================


@router.get("/history")
async def get_order_history(
    user_id: int | None = Query(None),
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """
    Get the logged-in user's orders, newest first.

    ``display_number`` counts the user's orders from oldest (1) to newest.
    """
    if user_id is not None and user_id != user.id:
        raise HTTPException(status_code=403, detail="You can only view your own orders.")

    orders = await ShopService(db).get_orders_by_user(user.id)
    total = len(orders)

    return render(
        session,
        orders=[
            {**serialize_order(order), "display_number": total - index}
            for index, order in enumerate(orders)
        ],
    )


# ==================== Admin ====================


@router.get("/manage")
async def manage_orders(
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """All orders with their customers."""
    rows = await ShopService(db).get_all_orders()

    return render(
        session,
        orders=[
            {
                **serialize_order(order),
                "customer": serialize_user(customer) if customer else None,
            }
            for order, customer in rows
        ],
        statuses=[status.value for status in OrderStatus],
    )


@router.post("/{order_id}/status")
async def update_order_status(
    order_id: int,
    request: OrderStatusRequest,
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Move an order to another status."""
    order = await ShopService(db).update_order_status(order_id, request.status)

    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    session.flash("success", "Order status updated.")
    return render(session, order=serialize_order(order))
