"""
Checkout Orchestrator - Cart to order state machine.

EMPTY -> AWAITING_SHIPPING -> AWAITING_PAYMENT_DETAILS -> SETTLING
      -> COMPLETE | FAILED

All payment paths converge on ``settle``, which re-validates and decrements
stock, charges the wallet when needed, stores the order and clears the
session's cart and pending checkout.
"""

from typing import Any

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import (
    AuthenticationRequired,
    CheckoutValidationError,
    EmptyCartError,
    InsufficientBalanceError,
    ShopError,
)
from storefront.core.session import PendingCheckout, SessionState, SessionUser
from storefront.models.shop import PaymentMethod
from storefront.modules.payments import strategies
from storefront.modules.payments.base import (
    CheckoutOutcome,
    CheckoutState,
    strategy_for,
)
from storefront.modules.payments.nets import NetsClient, get_nets_client
from storefront.modules.payments.paypal import PayPalClient, get_paypal_client
from storefront.modules.shop.cart import clear_cart, get_cart, recompute_totals, serialize_totals
from storefront.modules.shop.ledger import StockLedger
from storefront.modules.shop.service import ShopService
from storefront.modules.users.service import UserService


class CheckoutForm(BaseModel):
    """Checkout submission: shipping, method and optional card details."""

    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    postal_code: str | None = None
    payment_method: str | None = None

    card_number: str | None = None
    card_name: str | None = None
    card_expiry: str | None = None
    card_cvv: str | None = None

    @property
    def shipping_address(self) -> str | None:
        """Joined address, or None unless line 1, city and postal code are all set."""
        required = (self.address_line1, self.city, self.postal_code)
        if not all(value and value.strip() for value in required):
            return None
        parts = (self.address_line1, self.address_line2, self.city, self.postal_code)
        return ", ".join(part.strip() for part in parts if part and part.strip())

    @property
    def has_card_details(self) -> bool:
        return bool(self.card_number and self.card_number.strip())


class CheckoutOrchestrator:
    """
    Drives one visitor's checkout attempt.

    Session state (cart, pending checkout, NETS markers) is passed in by
    reference and mutated in place; the caller persists it.

    Usage:
        checkout = CheckoutOrchestrator(db_session, session_state)
        outcome = await checkout.process(form)
    """

    def __init__(
        self,
        db: AsyncSession,
        session: SessionState,
        nets: NetsClient | None = None,
        paypal: PayPalClient | None = None,
    ) -> None:
        self.db = db
        self.session = session
        self.nets = nets or get_nets_client()
        self.paypal = paypal or get_paypal_client()
        # SETTLING while settle runs, then the state settle ended in
        self.state: CheckoutState | None = None

        self.ledger = StockLedger(db)
        self.shop = ShopService(db)
        self.users = UserService(db)

    # ==================== Helpers ====================

    def _require_user(self) -> SessionUser:
        if self.session.user is None:
            raise AuthenticationRequired()
        return self.session.user

    def stage(self, shipping_address: str, method: PaymentMethod) -> PendingCheckout:
        """
        Write the single pending-checkout slot, replacing any earlier attempt.

        NETS references and the completion marker belong to the replaced
        attempt and are dropped with it.
        """
        self.session.nets_payment = None
        self.session.nets_order_completed = None
        self.session.pending_checkout = PendingCheckout(
            shipping_address=shipping_address,
            payment_method=method,
        )
        return self.session.pending_checkout

    def _reject(self, state: CheckoutState, message: str, redirect: str) -> CheckoutOutcome:
        self.session.flash("error", message)
        return CheckoutOutcome(state, redirect=redirect)

    def decline(self, error: ShopError, redirect: str | None = None) -> CheckoutOutcome:
        """End the attempt without an order; cart and pending checkout are kept."""
        return self._reject(CheckoutState.FAILED, error.message, redirect or error.redirect or "/checkout")

    # ==================== Entry ====================

    def summary(self) -> CheckoutOutcome:
        """Cart summary for the checkout page."""
        cart = get_cart(self.session)
        recompute_totals(cart)

        if not cart.items:
            return self._reject(CheckoutState.EMPTY, "Your cart is empty.", "/shop")

        pending = self.session.pending_checkout
        return CheckoutOutcome(
            CheckoutState.AWAITING_SHIPPING,
            payload={
                "totals": serialize_totals(cart.totals),
                "item_count": cart.item_count,
                "shipping_address": pending.shipping_address if pending else None,
                "payment_methods": [method.value for method in PaymentMethod],
            },
        )

    async def process(self, form: CheckoutForm) -> CheckoutOutcome:
        """
        Handle a checkout submission.

        Resolves shipping and payment method, then hands over to the
        method's strategy. Re-entrant: the card step posts back here with
        card details and no shipping fields.
        """
        self._require_user()
        cart = get_cart(self.session)
        recompute_totals(cart)

        if not cart.items:
            return self._reject(CheckoutState.EMPTY, "Your cart is empty.", "/shop")

        pending = self.session.pending_checkout
        shipping_address = form.shipping_address or (pending.shipping_address if pending else None)
        if not shipping_address:
            return self._reject(
                CheckoutState.AWAITING_SHIPPING,
                "Please complete your shipping information.",
                "/checkout",
            )

        requested = form.payment_method or (pending.payment_method.value if pending else None)
        method = PaymentMethod.resolve(requested)
        logger.debug(f"Checkout for user {self.session.user.id} via {method.value}")

        return await strategy_for(method, self).initiate(shipping_address, form)

    # ==================== Settlement ====================

    async def settle(
        self,
        method: PaymentMethod,
        shipping_address: str | None = None,
        payment_reference: str | None = None,
    ) -> CheckoutOutcome:
        """
        Finalize the attempt into an order.

        ``payment_reference`` identifies the provider payment being settled;
        an order already stored for it is returned instead of a new one.
        Failures roll back the database session, flash the reason and leave
        the cart and pending checkout untouched.
        """
        self.state = CheckoutState.SETTLING
        try:
            outcome = await self._settle(method, shipping_address, payment_reference)
        except IntegrityError as e:
            await self.db.rollback()
            outcome = await self._already_settled(payment_reference) if payment_reference else None
            if outcome is None:
                logger.error(f"Checkout settlement integrity error: {e}")
                outcome = self._reject(CheckoutState.FAILED, "Unable to process checkout.", "/checkout")
        except ShopError as e:
            await self.db.rollback()
            logger.warning(f"Checkout settlement failed: {e.message}")
            outcome = self._reject(CheckoutState.FAILED, e.message, e.redirect or "/checkout")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Checkout settlement database error: {e}")
            outcome = self._reject(CheckoutState.FAILED, "Unable to process checkout.", "/checkout")

        self.state = outcome.state
        return outcome

    async def _already_settled(self, payment_reference: str) -> CheckoutOutcome | None:
        """Outcome for a payment that already produced an order, if any."""
        user = self._require_user()
        order = await self.shop.get_order_by_payment_reference(payment_reference)
        if order is None:
            return None
        if order.user_id != user.id:
            raise CheckoutValidationError("This payment belongs to another account.")

        logger.info(f"Payment {payment_reference} already settled as order {order.id}")
        order_number = await self.shop.count_orders_by_user(user.id, up_to_order_id=order.id)
        clear_cart(self.session)
        self.session.pending_checkout = None
        return CheckoutOutcome(
            CheckoutState.COMPLETE,
            redirect="/orders/history",
            order_id=order.id,
            order_number=order_number,
        )

    async def _settle(
        self,
        method: PaymentMethod,
        shipping_address: str | None,
        payment_reference: str | None,
    ) -> CheckoutOutcome:
        user = self._require_user()
        if payment_reference:
            settled = await self._already_settled(payment_reference)
            if settled:
                return settled

        cart = get_cart(self.session)
        totals = recompute_totals(cart)

        if not cart.items:
            raise EmptyCartError()

        pending = self.session.pending_checkout
        shipping_address = shipping_address or (pending.shipping_address if pending else None)
        if not shipping_address:
            raise CheckoutValidationError("Shipping information is missing.")

        await self.ledger.ensure_stock(cart.items)
        await self.ledger.decrement_stock(cart.items)

        if method is PaymentMethod.WALLET:
            # Stock is already committed at this point; a shortfall here
            # leaves it decremented without an order.
            if not await self.users.deduct_wallet_balance(user.id, totals.total):
                logger.warning(
                    f"Wallet shortfall for user {user.id} after stock decrement "
                    f"({totals.total})"
                )
                raise InsufficientBalanceError()

        order_number = await self.shop.count_orders_by_user(user.id) + 1
        order = await self.shop.create_order(
            user_id=user.id,
            items=cart.items,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            shipping_address=shipping_address,
            payment_method=method,
            payment_reference=payment_reference,
        )
        await self.db.commit()
        logger.info(f"Order {order.id} created for user {user.id} via {method.value}")

        if method is PaymentMethod.WALLET:
            self.session.user = await self.users.refresh_session_user(user.id) or user

        clear_cart(self.session)
        self.session.pending_checkout = None
        self.session.flash("success", f"Order #{order_number} placed successfully!")

        return CheckoutOutcome(
            CheckoutState.COMPLETE,
            redirect="/orders/history",
            order_id=order.id,
            order_number=order_number,
        )

    # ==================== Provider entry points ====================

    def paypal_summary(self) -> CheckoutOutcome:
        """Staged attempt details for the PayPal approval page."""
        cart = get_cart(self.session)
        recompute_totals(cart)
        pending = self.session.pending_checkout

        if not cart.items:
            return self._reject(CheckoutState.EMPTY, "Your cart is empty.", "/shop")
        if not pending or not pending.shipping_address:
            return self._reject(
                CheckoutState.AWAITING_SHIPPING,
                "Please complete your shipping information.",
                "/checkout",
            )

        return CheckoutOutcome(
            CheckoutState.AWAITING_PAYMENT_DETAILS,
            payload={
                "totals": serialize_totals(cart.totals),
                "shipping_address": pending.shipping_address,
                "paypal_client_id": self.paypal.client_id,
            },
        )

    async def create_paypal_order(self) -> str:
        """
        Create the remote PayPal order for the current cart.

        Raises:
            EmptyCartError: Nothing to pay for
        """
        if not get_cart(self.session).items:
            raise EmptyCartError("Cart is empty.")
        return await strategies.PayPalPayment(self).create_remote_order()

    async def capture_paypal(self, remote_order_id: str | None) -> CheckoutOutcome:
        if not remote_order_id:
            raise CheckoutValidationError("Missing PayPal order id.")
        return await strategy_for(PaymentMethod.PAYPAL, self).finalize(remote_order_id=remote_order_id)

    async def generate_nets_qr(self) -> CheckoutOutcome:
        return await strategies.NetsPayment(self).generate()

    async def finalize_nets(self) -> CheckoutOutcome:
        return await strategy_for(PaymentMethod.NETS, self).finalize()

    async def nets_status(self, txn_retrieval_ref: str) -> dict[str, Any]:
        """One status query with no side effects."""
        payment = self.session.nets_payment
        status, raw = await self.nets.query_status(
            txn_retrieval_ref,
            payment.txn_id if payment else None,
            payment.txn_nets_qr_id if payment else None,
        )
        return {"status": status.value, "raw": raw}
