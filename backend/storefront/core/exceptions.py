"""
Storefront error taxonomy.

Every error raised by the shop core derives from ``ShopError`` and carries
the HTTP status and the route the client should be sent back to.
"""


class ShopError(Exception):
    """Base error for recoverable shop failures."""

    status_code: int = 400
    redirect: str | None = None
    default_message: str = "Unable to complete the request."

    def __init__(self, message: str | None = None, redirect: str | None = None) -> None:
        self.message = message or self.default_message
        if redirect is not None:
            self.redirect = redirect
        super().__init__(self.message)


# ==================== Validation ====================


class CheckoutValidationError(ShopError):
    """Missing or invalid checkout input."""

    redirect = "/checkout"
    default_message = "Please complete your shipping information."


class EmptyCartError(CheckoutValidationError):
    """Checkout attempted with no line items."""

    redirect = "/shop"
    default_message = "Your cart is empty."


class RegistrationError(ShopError):
    """Registration or profile form rejected."""

    redirect = "/register"


class InvalidOrderStatusError(ShopError):
    """Admin tried to set a status outside the allowed set."""

    redirect = "/orders/manage"
    default_message = "Invalid status selected."


# ==================== Catalog / stock ====================


class ProductNotFoundError(ShopError):
    status_code = 404
    redirect = "/shop"
    default_message = "Product not found."


class OutOfStockError(ShopError):
    status_code = 409
    redirect = "/shop"
    default_message = "This product is out of stock."


class InsufficientStockError(ShopError):
    """Requested quantity exceeds quantity on hand."""

    status_code = 409
    redirect = "/checkout"

    def __init__(self, product_name: str, available: int, requested: int) -> None:
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name}: "
            f"{available} available, {requested} requested."
        )


class CartItemNotFoundError(ShopError):
    status_code = 404
    redirect = "/cart"
    default_message = "Item not found in cart."


class InsufficientBalanceError(ShopError):
    status_code = 402
    redirect = "/checkout"
    default_message = "Insufficient wallet balance."


# ==================== Payments ====================


class PaymentProviderError(ShopError):
    """Provider transport or HTTP failure."""

    status_code = 502
    redirect = "/checkout"
    default_message = "Payment provider is unavailable."


class PaymentGatewayTimeout(PaymentProviderError):
    status_code = 504
    default_message = "NETS gateway timeout. Please try again."


class PaymentConfigurationError(PaymentProviderError):
    default_message = "Payment provider is not configured."


class PaymentDeclinedError(ShopError):
    """Provider reported failure, decline, timeout or cancellation."""

    status_code = 402
    redirect = "/checkout"
    default_message = "Payment was not completed."


# ==================== Auth ====================


class AuthenticationRequired(ShopError):
    status_code = 401
    redirect = "/login"
    default_message = "Please log in to continue."


class PermissionDenied(ShopError):
    status_code = 403
    redirect = "/shop"
    default_message = "Admin access required."
