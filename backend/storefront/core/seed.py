"""
Demo data seeding.

Runs once per application start and is idempotent: rows are only inserted
when the corresponding table has none, so restarts and multiple workers
never duplicate data.
"""

from decimal import Decimal

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.security import hash_password
from storefront.models.shop import Product
from storefront.models.user import User, UserRole

DEMO_PRODUCTS = [
    {"name": "Apples", "price": Decimal("1.50"), "category": "Fruits", "image": "apples.png", "quantity": 50},
    {"name": "Bananas", "price": Decimal("0.80"), "category": "Fruits", "image": "bananas.png", "quantity": 75},
    {"name": "Milk", "price": Decimal("3.49"), "category": "Dairy", "image": "milk.png", "quantity": 40},
    {"name": "Bread", "price": Decimal("1.80"), "category": "Bakery", "image": "bread.png", "quantity": 60},
    {"name": "Tomatoes", "price": Decimal("1.50"), "category": "Vegetables", "image": "tomatoes.png", "quantity": 80},
    {"name": "Broccoli", "price": Decimal("1.20"), "category": "Vegetables", "image": "broccoli.png", "quantity": 30},
]


async def _count(db: AsyncSession, model: type) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar_one()


async def seed_database(db: AsyncSession) -> None:
    """Insert the admin account and demo catalog if absent."""
    if not await db.scalar(select(User.id).where(User.email == settings.admin_email)):
        db.add(
            User(
                username="admin",
                email=settings.admin_email,
                hashed_password=hash_password(settings.admin_password),
                role=UserRole.ADMIN,
            )
        )
        logger.info(f"Seeded admin account {settings.admin_email}")

    if await _count(db, Product) == 0:
        db.add_all(Product(**product) for product in DEMO_PRODUCTS)
        logger.info(f"Seeded {len(DEMO_PRODUCTS)} demo products")

    await db.commit()
