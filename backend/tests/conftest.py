"""Shared pytest fixtures for storefront tests."""

from decimal import Decimal
from typing import Any, Callable

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from storefront.core.database import Base
from storefront.core.security import hash_password
from storefront.core.session import Cart, CartLineItem, SessionState, SessionStore
from storefront.models.shop import Product
from storefront.models.user import User, UserRole
from storefront.modules.payments.nets import NetsClient
from storefront.modules.payments.paypal import PayPalClient
from storefront.modules.shop.cart import recompute_totals
from storefront.modules.users.service import to_session_user


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine; writers are serialized with BEGIN IMMEDIATE."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session_factory) -> Callable[..., Any]:
    """Factory creating committed users."""

    async def _make_user(
        email: str = "buyer@example.com",
        password: str = "secret123",
        role: UserRole = UserRole.USER,
        wallet_balance: Decimal = Decimal("0.00"),
    ) -> User:
        async with session_factory() as session:
            user = User(
                username=email.split("@")[0],
                email=email,
                hashed_password=hash_password(password),
                role=role,
                wallet_balance=wallet_balance,
            )
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def make_product(session_factory) -> Callable[..., Any]:
    """Factory creating committed products."""

    async def _make_product(
        name: str = "Milk",
        price: Decimal = Decimal("3.49"),
        quantity: int = 10,
        category: str | None = "Dairy",
    ) -> Product:
        async with session_factory() as session:
            product = Product(name=name, price=price, quantity=quantity, category=category)
            session.add(product)
            await session.commit()
            return product

    return _make_product


@pytest.fixture
async def buyer(make_user) -> User:
    return await make_user()


@pytest.fixture
async def milk(make_product) -> Product:
    return await make_product()


@pytest.fixture
def session_state(buyer) -> SessionState:
    """Logged-in visitor with an empty cart."""
    return SessionState(user=to_session_user(buyer), cart=Cart())


def fill_cart(state: SessionState, *lines: tuple[Product, int]) -> Cart:
    """Put products straight into the session cart."""
    cart = state.cart or Cart()
    for product, quantity in lines:
        cart.items.append(
            CartLineItem(
                product_id=product.id,
                name=product.name,
                price=Decimal(product.price),
                quantity=quantity,
            )
        )
    recompute_totals(cart)
    state.cart = cart
    return cart


# ==================== Payment providers ====================


class FakeProvider:
    """Records requests and answers them from a queue of responses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response | Exception] = []
        self.default: httpx.Response | None = None

    def queue(self, *responses: httpx.Response | Exception) -> None:
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
        else:
            response = self.default
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise AssertionError(f"Unexpected request {request.method} {request.url}")
        return response

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def nets_payload(**data: Any) -> httpx.Response:
    return httpx.Response(200, json={"result": {"data": data}})


@pytest.fixture
def nets_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def nets_client(nets_provider):
    client = NetsClient(
        api_key="test-key",
        project_id="test-project",
        http_client=nets_provider.client(),
    )
    yield client
    await client.close()


@pytest.fixture
def paypal_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def paypal_client(paypal_provider):
    client = PayPalClient(
        client_id="test-client",
        client_secret="test-secret",
        api_url="https://paypal.test",
        http_client=paypal_provider.client(),
    )
    yield client
    await client.close()


# ==================== Sessions ====================


class MemorySessionStore(SessionStore):
    """Session store kept in a dict."""

    def __init__(self) -> None:
        super().__init__(ttl=3600)
        self.data: dict[str, str] = {}
        self.saves = 0

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def load(self, session_id: str | None) -> tuple[str, SessionState]:
        if session_id and session_id in self.data:
            return session_id, SessionState.model_validate_json(self.data[session_id])
        return self.new_session_id(), SessionState()

    async def save(self, session_id: str, state: SessionState) -> None:
        self.data[session_id] = state.model_dump_json()
        self.saves += 1

    async def touch(self, session_id: str) -> None:
        pass

    async def delete(self, session_id: str) -> None:
        self.data.pop(session_id, None)
