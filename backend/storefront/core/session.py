"""
Session State - per-visitor state stored in Redis.

The session holds everything that is owned by a single visitor and must
never be shared: the logged-in user, the cart, the pending checkout slot,
NETS payment markers and queued flash messages.

Usage:
    state = await store.load(session_id)
    state.flash("success", "Cart updated.")
    await store.save(session_id, state)
"""

import secrets
from decimal import Decimal
from typing import Any, Literal

import redis.asyncio as redis
from fastapi import Request
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from storefront.core.config import settings
from storefront.models.shop import PaymentMethod

Severity = Literal["success", "error", "info"]


class SessionUser(BaseModel):
    """Cached identity of the logged-in user."""

    id: int
    username: str
    email: str
    role: str = "user"
    wallet_balance: Decimal = Decimal("0.00")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class CartLineItem(BaseModel):
    """Cart line with display fields captured when the item was added."""

    product_id: int
    name: str
    price: Decimal
    image: str | None = None
    quantity: int = Field(ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class CartTotals(BaseModel):
    subtotal: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")


class Cart(BaseModel):
    """Ordered line items, unique by product id."""

    items: list[CartLineItem] = Field(default_factory=list)
    totals: CartTotals = Field(default_factory=CartTotals)

    def find(self, product_id: int) -> CartLineItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class PendingCheckout(BaseModel):
    """Checkout staged between the shipping step and payment."""

    shipping_address: str
    payment_method: PaymentMethod


class NetsPaymentSession(BaseModel):
    """References for the QR transaction of the current attempt."""

    txn_retrieval_ref: str
    txn_id: str
    txn_nets_qr_id: str | None = None


class NetsOrderCompleted(BaseModel):
    """Marker written once the QR attempt has produced an order."""

    order_id: int
    order_number: int


class FlashMessage(BaseModel):
    severity: Severity
    text: str


class SessionState(BaseModel):
    """Everything the storefront keeps for one visitor."""

    user: SessionUser | None = None
    cart: Cart | None = None
    pending_checkout: PendingCheckout | None = None
    nets_payment: NetsPaymentSession | None = None
    nets_order_completed: NetsOrderCompleted | None = None
    flashes: list[FlashMessage] = Field(default_factory=list)

    def flash(self, severity: Severity, text: str) -> None:
        """Queue a message for the next response."""
        self.flashes.append(FlashMessage(severity=severity, text=text))

    def drain_flashes(self) -> list[dict[str, str]]:
        """Return queued messages and forget them."""
        messages = [message.model_dump() for message in self.flashes]
        self.flashes = []
        return messages


class SessionStore:
    """
    Session storage using Redis.

    Sessions are stored as JSON under ``session:{id}`` with a sliding TTL.
    """

    def __init__(self, ttl: int | None = None) -> None:
        self._redis: redis.Redis | None = None
        self.ttl = ttl or settings.session_ttl

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(32)

    def _session_key(self, session_id: str) -> str:
        return f"session:{session_id}"

    async def load(self, session_id: str | None) -> tuple[str, SessionState]:
        """Load the session, starting a fresh one when missing or corrupt."""
        if not self._redis:
            await self.connect()

        if session_id:
            raw = await self._redis.get(self._session_key(session_id))
            if raw:
                try:
                    return session_id, SessionState.model_validate_json(raw)
                except ValidationError:
                    logger.warning(f"Invalid session data for {session_id[:8]}...")

        return self.new_session_id(), SessionState()

    async def save(self, session_id: str, state: SessionState) -> None:
        """Persist the session and refresh its TTL."""
        if not self._redis:
            await self.connect()

        await self._redis.setex(
            self._session_key(session_id),
            self.ttl,
            state.model_dump_json(),
        )

    async def touch(self, session_id: str) -> None:
        """Refresh the TTL without rewriting the stored state."""
        if not self._redis:
            await self.connect()
        await self._redis.expire(self._session_key(session_id), self.ttl)

    async def delete(self, session_id: str) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.delete(self._session_key(session_id))


# Singleton instance
_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get or create session store singleton."""
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store


def set_session_store(store: SessionStore | None) -> None:
    """Replace the session store singleton."""
    global _session_store
    _session_store = store


async def session_middleware(request: Request, call_next: Any) -> Any:
    """
    Load the visitor's session before the handler and save it after.

    The session is only written back when the handler changed it or issued
    a new id. Requests that merely read it (status polls, streams) must not
    overwrite what a concurrent request of the same visitor has saved.
    """
    store = get_session_store()
    incoming_id = request.cookies.get(settings.session_cookie_name)
    session_id, state = await store.load(incoming_id)

    request.state.session = state
    request.state.session_id = session_id

    loaded = state.model_dump_json()

    response = await call_next(request)

    changed = request.state.session.model_dump_json() != loaded
    if not changed and request.state.session_id == session_id:
        if incoming_id == session_id:
            await store.touch(session_id)
        return response

    await store.save(request.state.session_id, request.state.session)
    if request.state.session_id != incoming_id:
        response.set_cookie(
            settings.session_cookie_name,
            request.state.session_id,
            max_age=store.ttl,
            httponly=True,
            secure=settings.session_cookie_secure,
            samesite="lax",
        )
    return response


def get_session(request: Request) -> SessionState:
    """FastAPI dependency returning the current visitor's session."""
    return request.state.session


def rotate_session(request: Request) -> None:
    """Issue a new session id, e.g. after login or logout."""
    request.state.session_id = SessionStore.new_session_id()


def render(session: SessionState, /, **payload: Any) -> dict[str, Any]:
    """Build a JSON response body, draining flash messages exactly once."""
    payload["messages"] = session.drain_flashes()
    return payload
