"""
Payment strategy contract shared by all payment methods.

Each ``PaymentMethod`` member has exactly one strategy. A strategy knows how
to start a checkout attempt (``initiate``) and how to turn a confirmed
payment into an order (``finalize``); both end in the orchestrator's shared
settlement routine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from storefront.models.shop import PaymentMethod

if TYPE_CHECKING:
    from storefront.modules.shop.checkout import CheckoutForm, CheckoutOrchestrator


class CheckoutState(str, Enum):
    """Where a checkout attempt currently stands."""

    EMPTY = "empty"
    AWAITING_SHIPPING = "awaiting_shipping"
    AWAITING_PAYMENT_DETAILS = "awaiting_payment_details"
    SETTLING = "settling"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class CheckoutOutcome:
    """Result of one checkout transition."""

    state: CheckoutState
    redirect: str | None = None
    order_id: int | None = None
    order_number: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "redirect": self.redirect,
            "order_id": self.order_id,
            "order_number": self.order_number,
            **self.payload,
        }


class PaymentStrategy(ABC):
    """One way of paying, bound to a checkout orchestrator."""

    method: ClassVar[PaymentMethod]

    def __init__(self, checkout: "CheckoutOrchestrator") -> None:
        self.checkout = checkout

    @abstractmethod
    async def initiate(self, shipping_address: str, form: "CheckoutForm") -> CheckoutOutcome:
        """Start the attempt once shipping is known."""

    async def finalize(self, **kwargs: Any) -> CheckoutOutcome:
        """Settle a confirmed payment for the staged attempt."""
        return await self.checkout.settle(self.method)


_STRATEGIES: dict[PaymentMethod, type[PaymentStrategy]] = {}


def register_strategy(cls: type[PaymentStrategy]) -> type[PaymentStrategy]:
    """Class decorator adding a strategy to the registry."""
    if cls.method in _STRATEGIES:
        raise RuntimeError(f"Duplicate payment strategy for {cls.method.value}")
    _STRATEGIES[cls.method] = cls
    return cls


def verify_registry() -> None:
    """Fail fast if any payment method has no strategy."""
    missing = [method.value for method in PaymentMethod if method not in _STRATEGIES]
    if missing:
        raise RuntimeError(f"No payment strategy for: {', '.join(missing)}")


def strategy_for(method: PaymentMethod, checkout: "CheckoutOrchestrator") -> PaymentStrategy:
    return _STRATEGIES[method](checkout)
