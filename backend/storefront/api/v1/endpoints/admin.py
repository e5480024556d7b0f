"""
Admin API Endpoints.

Inventory and user management, admin role required.
"""

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.security import require_admin
from storefront.core.session import SessionState, SessionUser, get_session, render
from storefront.modules.shop.service import ShopService, serialize_product
from storefront.modules.users.service import UserService, serialize_user

router = APIRouter(dependencies=[Depends(require_admin)])


# ==================== Schemas ====================


class ProductCreateRequest(BaseModel):
    """Add a product to the catalog."""

    name: str
    price: Decimal = Field(ge=0)
    quantity: int = Field(0, ge=0)
    category: str | None = None
    image: str | None = None


class ProductUpdateRequest(BaseModel):
    name: str | None = None
    price: Decimal | None = Field(None, ge=0)
    quantity: int | None = Field(None, ge=0)
    category: str | None = None
    image: str | None = None


class UserUpdateRequest(BaseModel):
    username: str | None = None
    email: str | None = None
    address: str | None = None
    contact: str | None = None
    password: str | None = None
    role: str | None = None
    wallet_balance: Decimal | None = Field(None, ge=0)


# ==================== Products ====================


@router.get("/products")
async def list_products(
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Inventory view."""
    products = await ShopService(db).get_products()
    return render(session, items=[serialize_product(p) for p in products])


@router.post("/products", status_code=201)
async def create_product(
    request: ProductCreateRequest,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    product = await ShopService(db).create_product(**request.model_dump())
    session.flash("success", f"{product.name} added to inventory.")
    return render(session, product=serialize_product(product))


@router.put("/products/{product_id}")
async def update_product(
    product_id: int,
    request: ProductUpdateRequest,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    product = await ShopService(db).update_product(product_id, **request.model_dump())
    session.flash("success", "Product updated.")
    return render(session, product=serialize_product(product))


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    await ShopService(db).delete_product(product_id)
    session.flash("success", "Product deleted.")
    return render(session, product_id=product_id)


# ==================== Users ====================


@router.get("/users")
async def list_users(
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    users = await UserService(db).get_users()
    return render(session, users=[serialize_user(u) for u in users])


@router.get("/users/{user_id}")
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    user = await UserService(db).get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return render(session, user=serialize_user(user))


@router.put("/users/{user_id}")
async def update_user(
    user_id: int,
    request: UserUpdateRequest,
    admin: SessionUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Edit an account; other admins cannot be edited."""
    users = UserService(db)
    updated = await users.admin_update(admin.id, user_id, request.model_dump())

    if updated.id == admin.id:
        session.user = await users.refresh_session_user(admin.id)

    session.flash("success", "User updated.")
    return render(session, user=serialize_user(updated))
