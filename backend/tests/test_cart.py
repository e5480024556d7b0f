"""Cart totals and stock-clamped cart edits."""

from decimal import Decimal

import pytest

from storefront.core.exceptions import CartItemNotFoundError, OutOfStockError, ProductNotFoundError
from storefront.core.session import Cart, CartLineItem, SessionState
from storefront.modules.shop.cart import CartService, recompute_totals

from conftest import fill_cart


def _line(product_id: int, price: str, quantity: int) -> CartLineItem:
    return CartLineItem(product_id=product_id, name=f"P{product_id}", price=Decimal(price), quantity=quantity)


def test_totals_for_two_milks():
    cart = Cart(items=[_line(1, "3.49", 2)])

    totals = recompute_totals(cart, tax_rate=Decimal("0.08"))

    assert totals.subtotal == Decimal("6.98")
    assert totals.tax == Decimal("0.56")
    assert totals.total == Decimal("7.54")


def test_tax_is_rounded_once_after_summing():
    # per line each 0.008 would round to 0.01; summed it is 0.024 -> 0.02
    cart = Cart(items=[_line(1, "0.10", 1), _line(2, "0.10", 1), _line(3, "0.10", 1)])

    totals = recompute_totals(cart, tax_rate=Decimal("0.08"))

    assert totals.subtotal == Decimal("0.30")
    assert totals.tax == Decimal("0.02")
    assert totals.total == totals.subtotal + totals.tax


def test_tax_rounds_half_up():
    cart = Cart(items=[_line(1, "0.10", 1)])

    totals = recompute_totals(cart, tax_rate=Decimal("0.05"))

    assert totals.tax == Decimal("0.01")
    assert totals.total == Decimal("0.11")


def test_empty_cart_totals_are_zero():
    totals = recompute_totals(Cart())

    assert totals.subtotal == Decimal("0")
    assert totals.total == Decimal("0")


async def test_add_item_clamps_to_stock(db, make_product):
    product = await make_product(name="Bread", price=Decimal("1.80"), quantity=3)
    state = SessionState()

    cart = await CartService(db, state).add_item(product.id, 5)

    assert cart.find(product.id).quantity == 3
    texts = [flash.text for flash in state.flashes]
    assert "Only 3 unit(s) left in stock." in texts
    assert "Bread added to cart." in texts


async def test_add_item_merges_existing_line(db, milk):
    state = SessionState()
    service = CartService(db, state)

    await service.add_item(milk.id, 2)
    cart = await service.add_item(milk.id, 3)

    assert len(cart.items) == 1
    assert cart.find(milk.id).quantity == 5
    assert cart.totals.subtotal == Decimal("17.45")


@pytest.mark.parametrize("quantity", ["abc", None, 0, -4])
async def test_bad_quantity_falls_back_to_one(db, milk, quantity):
    state = SessionState()

    cart = await CartService(db, state).add_item(milk.id, quantity)

    assert cart.find(milk.id).quantity == 1


async def test_add_unknown_product(db):
    with pytest.raises(ProductNotFoundError):
        await CartService(db, SessionState()).add_item(9999, 1)


async def test_add_sold_out_product(db, make_product):
    product = await make_product(name="Broccoli", quantity=0)

    with pytest.raises(OutOfStockError):
        await CartService(db, SessionState()).add_item(product.id, 1)


async def test_update_item_clamps_and_flashes(db, make_product):
    product = await make_product(name="Apples", price=Decimal("1.50"), quantity=4)
    state = SessionState()
    fill_cart(state, (product, 1))

    cart = await CartService(db, state).update_item(product.id, 10)

    assert cart.find(product.id).quantity == 4
    assert state.flashes[-1].text == "Only 4 unit(s) left. Quantity adjusted."


async def test_update_item_drops_sold_out_product(db, make_product):
    product = await make_product(name="Tomatoes", quantity=0)
    state = SessionState()
    fill_cart(state, (product, 2))

    cart = await CartService(db, state).update_item(product.id, 1)

    assert cart.items == []
    assert state.flashes[-1].text == "This product is no longer available."


async def test_update_missing_line(db, milk):
    with pytest.raises(CartItemNotFoundError):
        await CartService(db, SessionState()).update_item(milk.id, 1)


async def test_view_reports_live_stock_without_changing_quantities(db, make_product):
    product = await make_product(name="Bananas", price=Decimal("0.80"), quantity=1)
    state = SessionState()
    fill_cart(state, (product, 3))

    view = await CartService(db, state).view()

    assert view["items"][0]["quantity"] == 3
    assert view["items"][0]["available"] == 1
    assert view["item_count"] == 3
    assert view["totals"]["subtotal"] == 2.4


async def test_remove_and_clear(milk):
    state = SessionState()
    fill_cart(state, (milk, 2))
    service = CartService(None, state)

    assert service.remove_item(milk.id).items == []

    fill_cart(state, (milk, 1))
    assert service.clear().items == []
