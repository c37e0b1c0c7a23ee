"""Shared test fixtures — single test DB for all test modules."""
from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from src.db.tables import Base
from src.db.engine import get_session
from src.services.payment_gateway import (
    ChargeResult,
    CustomerProfile,
    GatewayError,
    PaymentGateway,
    StoredCard,
    get_gateway,
)

# Use a shared in-memory DB with check_same_thread=False and StaticPool
# This ensures all connections see the same in-memory database.
from sqlalchemy.pool import StaticPool

TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


async def override_get_session():
    async with TestSession() as session:
        yield session


# Import app and override BEFORE any test module imports app
from src.api.main import app  # noqa: E402

app.dependency_overrides[get_session] = override_get_session

import src.db.engine as _engine_mod  # noqa: E402
_engine_mod.async_session = TestSession
_engine_mod.engine = test_engine


class FakeGateway(PaymentGateway):
    """In-memory PaymentGateway. Set fail_on to make named calls raise."""

    def __init__(self):
        self.customers: list[CustomerProfile] = []
        self.charges: list[dict] = []
        self.cards: dict[str, list[StoredCard]] = {}
        self.cancelled: list[str] = []
        self.scheduled: list[tuple[str, Optional[int], date]] = []
        self.charge_status = "COMPLETED"
        self.fail_on: set[str] = set()
        self.on_charge = None

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise GatewayError(f"{name} failed", status_code=402, errors=[{"code": "CARD_DECLINED"}])

    async def create_customer(self, profile: CustomerProfile) -> str:
        self._maybe_fail("create_customer")
        self.customers.append(profile)
        return f"cust_{len(self.customers)}"

    async def charge(self, amount_minor_units, currency, payment_method_id, customer_id, idempotency_key):
        self._maybe_fail("charge")
        self.charges.append({
            "amount": amount_minor_units,
            "currency": currency,
            "source_id": payment_method_id,
            "customer_id": customer_id,
            "idempotency_key": idempotency_key,
        })
        if self.on_charge is not None:
            await self.on_charge()
        return ChargeResult(f"pay_{len(self.charges)}", self.charge_status, amount_minor_units, currency)

    async def list_stored_cards(self, customer_id):
        self._maybe_fail("list_stored_cards")
        return list(self.cards.get(customer_id, []))

    async def create_stored_card(self, customer_id, source_id, cardholder_name=None):
        self._maybe_fail("create_stored_card")
        card = StoredCard(
            id=f"ccof_{uuid.uuid4().hex[:8]}", last4="1111", brand="VISA",
            exp_month=12, exp_year=2030, enabled=True, cardholder_name=cardholder_name,
        )
        self.cards.setdefault(customer_id, []).append(card)
        return card

    async def disable_stored_card(self, card_id):
        self._maybe_fail("disable_stored_card")
        for customer_id, cards in self.cards.items():
            for i, card in enumerate(cards):
                if card.id == card_id:
                    disabled = StoredCard(**{**card.to_dict(), "enabled": False})
                    cards[i] = disabled
                    return disabled
        raise GatewayError("Card not found", status_code=404)

    async def cancel_recurring(self, subscription_id):
        self._maybe_fail("cancel_recurring")
        self.cancelled.append(subscription_id)

    async def schedule_cancel(self, subscription_id, version, cancel_on):
        self._maybe_fail("schedule_cancel")
        self.scheduled.append((subscription_id, version, cancel_on))


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    import src.db.user_tables  # noqa: F401
    import src.db.subscription_tables  # noqa: F401

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def gateway():
    gw = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: gw
    yield gw
    app.dependency_overrides.pop(get_gateway, None)


@pytest_asyncio.fixture
async def session():
    async with TestSession() as s:
        yield s


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user():
    """Factory: insert a user and return it (detached, attributes loaded)."""
    from src.db.user_tables import UserRow

    async def _make(email: Optional[str] = None, **fields):
        async with TestSession() as s:
            user = UserRow(email=email or f"{uuid.uuid4().hex[:10]}@example.com", **fields)
            s.add(user)
            await s.commit()
            return user
    return _make


@pytest.fixture
def make_subscription():
    from src.db.subscription_tables import SubscriptionRow

    async def _make(user_id: str, **fields):
        async with TestSession() as s:
            sub = SubscriptionRow(user_id=user_id, **fields)
            s.add(sub)
            await s.commit()
            return sub
    return _make


@pytest.fixture
def load_user():
    from src.db.user_tables import UserRow

    async def _load(user_id: str):
        async with TestSession() as s:
            return await s.get(UserRow, user_id)
    return _load


@pytest.fixture
def load_subscription():
    from src.db.subscription_tables import SubscriptionRow

    async def _load(user_id: str):
        async with TestSession() as s:
            result = await s.execute(select(SubscriptionRow).where(SubscriptionRow.user_id == user_id))
            return result.scalar_one_or_none()
    return _load


@pytest.fixture
def auth_headers():
    from src.auth import create_tokens

    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_tokens(user.id)['access_token']}"}
    return _headers


@pytest.fixture
def session_factory():
    return TestSession
