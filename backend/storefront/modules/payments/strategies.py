"""
Concrete payment strategies, one per PaymentMethod.
"""

from typing import TYPE_CHECKING, Any

from loguru import logger

from storefront.core.config import settings
from storefront.core.exceptions import (
    PaymentDeclinedError,
    PaymentGatewayTimeout,
    PaymentProviderError,
)
from storefront.core.session import NetsOrderCompleted, NetsPaymentSession
from storefront.models.shop import PaymentMethod
from storefront.modules.payments.base import (
    CheckoutOutcome,
    CheckoutState,
    PaymentStrategy,
    register_strategy,
    verify_registry,
)
from storefront.modules.payments.nets import TxnStatus
from storefront.modules.shop.cart import get_cart, recompute_totals

if TYPE_CHECKING:
    from storefront.modules.shop.checkout import CheckoutForm


@register_strategy
class CashPayment(PaymentStrategy):
    """Cash on delivery: settles immediately."""

    method = PaymentMethod.CASH

    async def initiate(self, shipping_address: str, form: "CheckoutForm") -> CheckoutOutcome:
        return await self.checkout.settle(self.method, shipping_address)


@register_strategy
class WalletPayment(PaymentStrategy):
    """Stored balance: settles immediately, deducting the wallet."""

    method = PaymentMethod.WALLET

    async def initiate(self, shipping_address: str, form: "CheckoutForm") -> CheckoutOutcome:
        return await self.checkout.settle(self.method, shipping_address)


@register_strategy
class CardPayment(PaymentStrategy):
    """Card: a second step collects details, then settles."""

    method = PaymentMethod.CARD

    async def initiate(self, shipping_address: str, form: "CheckoutForm") -> CheckoutOutcome:
        if not form.has_card_details:
            self.checkout.stage(shipping_address, self.method)
            cart = get_cart(self.checkout.session)
            return CheckoutOutcome(
                CheckoutState.AWAITING_PAYMENT_DETAILS,
                redirect="/checkout/card",
                payload={
                    "shipping_address": shipping_address,
                    "total": float(cart.totals.total),
                },
            )
        return await self.checkout.settle(self.method, shipping_address)


@register_strategy
class PayPalPayment(PaymentStrategy):
    """
    Redirect/capture flow.

    The buyer approves a remote order in the PayPal popup; the server then
    captures it and settles only when the capture is COMPLETED.
    """

    method = PaymentMethod.PAYPAL

    async def initiate(self, shipping_address: str, form: "CheckoutForm") -> CheckoutOutcome:
        self.checkout.stage(shipping_address, self.method)
        return CheckoutOutcome(CheckoutState.AWAITING_PAYMENT_DETAILS, redirect="/checkout/paypal")

    async def create_remote_order(self) -> str:
        """Create the PayPal order for the current cart total."""
        cart = get_cart(self.checkout.session)
        recompute_totals(cart)
        return await self.checkout.paypal.create_order(
            cart.totals.total,
            settings.shop_currency,
            return_url=settings.paypal_return_url,
            cancel_url=settings.paypal_cancel_url,
        )

    async def finalize(self, remote_order_id: str | None = None, **kwargs: Any) -> CheckoutOutcome:
        try:
            capture = await self.checkout.paypal.capture_order(remote_order_id)
        except PaymentProviderError as e:
            return self.checkout.decline(e)

        status = str(capture.get("status") or "").upper()
        if status != "COMPLETED":
            logger.warning(f"PayPal capture {remote_order_id} returned status {status or 'none'}")
            return self.checkout.decline(PaymentDeclinedError("PayPal payment not completed."))

        return await self.checkout.settle(self.method, payment_reference=remote_order_id)


@register_strategy
class NetsPayment(PaymentStrategy):
    """
    QR flow.

    A QR code is generated and the client watches a status stream. The
    success page then finalizes; a marker in the session makes repeated
    visits return the same order.
    """

    method = PaymentMethod.NETS

    async def initiate(self, shipping_address: str, form: "CheckoutForm") -> CheckoutOutcome:
        self.checkout.stage(shipping_address, self.method)
        return await self.generate()

    async def generate(self) -> CheckoutOutcome:
        """Request a QR code and stage the transaction references."""
        session = self.checkout.session
        cart = get_cart(session)
        recompute_totals(cart)

        if not cart.items:
            session.flash("error", "Your cart is empty.")
            return CheckoutOutcome(CheckoutState.EMPTY, redirect="/shop")

        txn_id = settings.nets_txn_id
        amount = cart.totals.total

        try:
            qr_data = await self.checkout.nets.request_qr(txn_id, amount)
        except PaymentGatewayTimeout as e:
            return self.checkout.decline(e)
        except PaymentProviderError as e:
            logger.error(f"Error generating NETS QR code: {e}")
            return self.checkout.decline(PaymentProviderError("Unable to start NETS payment."), "/nets-qr/fail")

        if (
            qr_data.get("response_code") == "00"
            and str(qr_data.get("txn_status")) == "1"
            and qr_data.get("qr_code")
        ):
            ref = qr_data.get("txn_retrieval_ref")
            session.nets_payment = NetsPaymentSession(
                txn_retrieval_ref=ref,
                txn_id=txn_id,
                txn_nets_qr_id=qr_data.get("txn_nets_qr_id"),
            )
            session.nets_order_completed = None
            logger.info(f"NETS QR generated ({ref}) for {amount}")

            return CheckoutOutcome(
                CheckoutState.AWAITING_PAYMENT_DETAILS,
                payload={
                    "total": f"{amount:.2f}",
                    "qr_code_url": f"data:image/png;base64,{qr_data['qr_code']}",
                    "txn_retrieval_ref": ref,
                    "network_code": qr_data.get("network_status"),
                    "timer": settings.nets_qr_timer,
                    "stream_url": f"{settings.api_v1_prefix}/nets-qr/stream/{ref}",
                    "status_url": f"{settings.api_v1_prefix}/nets-qr/status/{ref}",
                },
            )

        message = qr_data.get("error_message") or "An error occurred while generating the QR code."
        return self.checkout.decline(PaymentDeclinedError(message), "/nets-qr/fail")

    async def finalize(self, **kwargs: Any) -> CheckoutOutcome:
        """Turn a confirmed QR payment into exactly one order."""
        session = self.checkout.session
        completed = session.nets_order_completed

        if completed:
            return self._success(completed)

        payment = session.nets_payment
        if payment is None:
            return self.checkout.decline(PaymentDeclinedError("No NETS payment is in progress."))

        try:
            status, _ = await self.checkout.nets.query_status(
                payment.txn_retrieval_ref,
                payment.txn_id,
                payment.txn_nets_qr_id,
            )
        except PaymentProviderError as e:
            return self.checkout.decline(e)

        if status is TxnStatus.PENDING:
            session.flash("info", "Payment is still being processed.")
            return CheckoutOutcome(CheckoutState.AWAITING_PAYMENT_DETAILS)
        if status is TxnStatus.FAIL:
            return self.checkout.decline(PaymentDeclinedError("Payment failed or timed out."), "/nets-qr/fail")

        outcome = await self.checkout.settle(self.method, payment_reference=payment.txn_retrieval_ref)
        if outcome.state is not CheckoutState.COMPLETE:
            return outcome

        completed = NetsOrderCompleted(order_id=outcome.order_id, order_number=outcome.order_number)
        session.nets_order_completed = completed
        return self._success(completed)

    @staticmethod
    def _success(completed: NetsOrderCompleted) -> CheckoutOutcome:
        return CheckoutOutcome(
            CheckoutState.COMPLETE,
            redirect="/orders/history",
            order_id=completed.order_id,
            order_number=completed.order_number,
            payload={
                "message": f"Payment received. Order #{completed.order_number} placed successfully!"
            },
        )


verify_registry()
