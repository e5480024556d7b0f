"""
Shop API Endpoints.

Catalog browsing, product reviews and the customer's wishlist.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.security import require_user
from storefront.core.session import SessionState, SessionUser, get_session, render
from storefront.modules.shop.service import ShopService, serialize_product

router = APIRouter()


# ==================== Schemas ====================


class ReviewRequest(BaseModel):
    """Rate a product."""

    rating: int | str = 5
    comment: str = ""


# ==================== Products ====================


@router.get("/products")
async def get_products(
    category: str | None = Query(None, description="Filter by category"),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Get products with their rating summary."""
    shop = ShopService(db)
    products = await shop.get_products(category=category)
    summary = await shop.get_review_summary([p.id for p in products])

    return render(
        session,
        items=[serialize_product(p, summary.get(p.id)) for p in products],
        categories=await shop.get_categories(),
        category=category,
    )


@router.get("/products/{product_id}")
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Get product details with reviews."""
    shop = ShopService(db)
    product = await shop.get_product(product_id)

    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    summary = await shop.get_review_summary([product.id])
    reviews = await shop.get_reviews(product.id)

    return render(
        session,
        product=serialize_product(product, summary.get(product.id)),
        reviews=[
            {
                "id": review.id,
                "username": username,
                "rating": review.rating,
                "comment": review.comment,
                "created_at": review.created_at.isoformat() if review.created_at else None,
            }
            for review, username in reviews
        ],
    )


@router.post("/products/{product_id}/reviews", status_code=201)
async def add_review(
    product_id: int,
    request: ReviewRequest,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Add a review to a product."""
    review = await ShopService(db).add_review(
        product_id=product_id,
        user_id=user.id,
        rating=request.rating,
        comment=request.comment,
    )
    session.flash("success", "Review submitted.")
    return render(session, review_id=review.id, rating=review.rating)


# ==================== Wishlist ====================


@router.get("/wishlist")
async def get_wishlist(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Get the user's saved products."""
    products = await ShopService(db).get_wishlist(user.id)
    return render(session, items=[serialize_product(p) for p in products])


@router.post("/wishlist/{product_id}")
async def add_to_wishlist(
    product_id: int,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    await ShopService(db).add_to_wishlist(user.id, product_id)
    session.flash("success", "Added to wishlist.")
    return render(session, product_id=product_id)


@router.delete("/wishlist/{product_id}")
async def remove_from_wishlist(
    product_id: int,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    await ShopService(db).remove_from_wishlist(user.id, product_id)
    session.flash("success", "Removed from wishlist.")
    return render(session, product_id=product_id)
