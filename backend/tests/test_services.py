"""Order store, catalog extras, accounts and seeding."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from storefront.core.exceptions import (
    InvalidOrderStatusError,
    PermissionDenied,
    ProductNotFoundError,
    RegistrationError,
)
from storefront.core.seed import DEMO_PRODUCTS, seed_database
from storefront.core.session import CartLineItem
from storefront.models.shop import OrderStatus, PaymentMethod, Product
from storefront.models.user import User, UserRole
from storefront.modules.shop.service import ShopService, clamp_rating
from storefront.modules.users.service import UserService


async def _place_order(db, user_id: int, method: PaymentMethod = PaymentMethod.CARD):
    order = await ShopService(db).create_order(
        user_id=user_id,
        items=[CartLineItem(product_id=1, name="Milk", price=Decimal("3.49"), quantity=2)],
        subtotal=Decimal("6.98"),
        tax=Decimal("0.56"),
        total=Decimal("7.54"),
        shipping_address="1 Orchard Road, Singapore, 238801",
        payment_method=method,
    )
    await db.commit()
    return order


# ==================== Orders ====================


async def test_order_status_follows_payment_method(db, buyer):
    cash = await _place_order(db, buyer.id, PaymentMethod.CASH)
    card = await _place_order(db, buyer.id, PaymentMethod.CARD)

    assert cash.status is OrderStatus.CASH_ON_DELIVERY
    assert card.status is OrderStatus.PAID
    assert cash.items == [
        {"product_id": 1, "name": "Milk", "price": "3.49", "image": None, "quantity": 2}
    ]


async def test_update_order_status(db, buyer):
    order = await _place_order(db, buyer.id)
    shop = ShopService(db)

    updated = await shop.update_order_status(order.id, "FULFILLED")

    assert updated.status is OrderStatus.FULFILLED


@pytest.mark.parametrize("status", ["SHIPPED", "paid", "", None])
async def test_update_order_status_rejects_unknown_values(db, buyer, status):
    order = await _place_order(db, buyer.id)

    with pytest.raises(InvalidOrderStatusError):
        await ShopService(db).update_order_status(order.id, status)


async def test_update_status_of_missing_order(db):
    assert await ShopService(db).update_order_status(404, "PAID") is None


async def test_order_snapshot_is_immutable(db, buyer):
    order = await _place_order(db, buyer.id)

    order.total = Decimal("0.01")
    with pytest.raises(ValueError, match="immutable"):
        await db.flush()
    await db.rollback()


async def test_orders_are_listed_newest_first(db, buyer, make_user):
    other = await make_user(email="other@example.com")
    first = await _place_order(db, buyer.id)
    second = await _place_order(db, buyer.id)
    await _place_order(db, other.id)
    shop = ShopService(db)

    mine = await shop.get_orders_by_user(buyer.id)
    everything = await shop.get_all_orders()

    assert [order.id for order in mine] == [second.id, first.id]
    assert await shop.count_orders_by_user(buyer.id) == 2
    assert len(everything) == 3
    assert {customer.email for _, customer in everything} == {"buyer@example.com", "other@example.com"}


# ==================== Catalog ====================


async def test_products_and_categories(db, make_product):
    await make_product(name="Milk", category="Dairy")
    await make_product(name="Apples", category="Fruits")
    shop = ShopService(db)

    assert await shop.get_categories() == ["Dairy", "Fruits"]
    assert [p.name for p in await shop.get_products(category="Fruits")] == ["Apples"]


async def test_update_product_skips_unset_fields(db, milk):
    shop = ShopService(db)

    product = await shop.update_product(milk.id, quantity=3, name=None)

    assert product.quantity == 3
    assert product.name == "Milk"


async def test_delete_missing_product(db):
    with pytest.raises(ProductNotFoundError):
        await ShopService(db).delete_product(12345)


@pytest.mark.parametrize("raw, expected", [(5, 5), ("3", 3), (9, 5), (0, 1), ("x", 1), (None, 1)])
def test_clamp_rating(raw, expected):
    assert clamp_rating(raw) == expected


async def test_reviews_and_summary(db, buyer, milk):
    shop = ShopService(db)

    await shop.add_review(milk.id, buyer.id, rating=5, comment=" Fresh ")
    await shop.add_review(milk.id, buyer.id, rating=2)

    reviews = await shop.get_reviews(milk.id)
    summary = await shop.get_review_summary([milk.id])

    assert {review.comment for review, _ in reviews} == {"Fresh", ""}
    assert {username for _, username in reviews} == {"buyer"}
    assert summary[milk.id] == {"avg_rating": 3.5, "review_count": 2}


async def test_review_of_missing_product(db, buyer):
    with pytest.raises(ProductNotFoundError):
        await ShopService(db).add_review(999, buyer.id)


async def test_wishlist_ignores_duplicates(db, buyer, milk):
    shop = ShopService(db)

    await shop.add_to_wishlist(buyer.id, milk.id)
    await shop.add_to_wishlist(buyer.id, milk.id)

    assert [p.id for p in await shop.get_wishlist(buyer.id)] == [milk.id]

    await shop.remove_from_wishlist(buyer.id, milk.id)
    assert await shop.get_wishlist(buyer.id) == []


# ==================== Users ====================


async def test_register_and_authenticate(db):
    users = UserService(db)

    user = await users.register("Mei", " Mei@Example.com ", "secret123")

    assert user.email == "mei@example.com"
    assert user.role is UserRole.USER
    assert await users.authenticate("MEI@example.com", "secret123") is not None
    assert await users.authenticate("mei@example.com", "wrong-pass") is None


@pytest.mark.parametrize(
    "username, email, password, message",
    [
        ("", "a@example.com", "secret123", "Please fill in all required details."),
        ("a", "a@example.com", "short", "Password should be at least 6 characters long."),
        ("a", "buyer@example.com", "secret123", "This email address is already registered."),
    ],
)
async def test_register_rejections(db, buyer, username, email, password, message):
    with pytest.raises(RegistrationError) as excinfo:
        await UserService(db).register(username, email, password)

    assert excinfo.value.message == message


async def test_update_profile_rejects_taken_email(db, buyer, make_user):
    other = await make_user(email="other@example.com")

    with pytest.raises(RegistrationError):
        await UserService(db).update_profile(other.id, {"email": "buyer@example.com"})


async def test_admin_cannot_edit_another_admin(db, make_user):
    admin = await make_user(email="admin@example.com", role=UserRole.ADMIN)
    other_admin = await make_user(email="admin2@example.com", role=UserRole.ADMIN)

    with pytest.raises(PermissionDenied):
        await UserService(db).admin_update(admin.id, other_admin.id, {"username": "x"})


async def test_admin_sets_role_and_wallet(db, buyer, make_user):
    admin = await make_user(email="admin@example.com", role=UserRole.ADMIN)

    user = await UserService(db).admin_update(
        admin.id, buyer.id, {"role": "admin", "wallet_balance": "15.00"}
    )

    assert user.role is UserRole.ADMIN
    assert user.wallet_balance == Decimal("15.00")


async def test_deduct_wallet_balance_is_guarded(db, make_user):
    user = await make_user(email="wallet@example.com", wallet_balance=Decimal("10.00"))
    users = UserService(db)

    assert await users.deduct_wallet_balance(user.id, Decimal("7.54"))
    assert not await users.deduct_wallet_balance(user.id, Decimal("7.54"))
    await db.commit()

    refreshed = await users.refresh_session_user(user.id)
    assert refreshed.wallet_balance == Decimal("2.46")


# ==================== Seeding ====================


async def test_seed_is_idempotent(db):
    await seed_database(db)
    await seed_database(db)

    assert await db.scalar(select(func.count(Product.id))) == len(DEMO_PRODUCTS)
    assert await db.scalar(select(func.count(User.id)).where(User.role == UserRole.ADMIN)) == 1
