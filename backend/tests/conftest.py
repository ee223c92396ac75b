"""Pytest configuration and shared fixtures for API tests."""

import os
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test DB and gateway config before app imports so config/engine use them
_TEST_DB = Path(tempfile.gettempdir()) / "subscription_billing_test.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB}")
os.environ.setdefault("FINCODE_API_KEY", "m_test_secret")
os.environ.setdefault("FINCODE_PUBLIC_KEY", "p_test_public")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import app.models  # noqa: E402,F401
from app.api.deps import get_fincode_client, get_optional_fincode_client  # noqa: E402
from app.core.auth import hash_password  # noqa: E402
from app.core.exceptions import GatewayError  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import async_session_maker, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models.user import User  # noqa: E402

TEST_EMAIL = "test@test.com"
TEST_PASSWORD = "password123"


class FakeFincode:
    """In-memory stand-in for FincodeClient (same async methods, fincode-shaped payloads)."""

    def __init__(self):
        self.customers: dict[str, dict] = {}
        self.cards: dict[str, dict[str, dict]] = {}
        self.subscriptions: dict[str, dict] = {}
        self.plans: list[dict] = [{"id": "p1", "plan_name": "Monthly", "amount": "980", "currency": "JPY"}]
        self.results: list[dict] = [{"id": "r1", "status": "CHECKED", "amount": "980"}]
        self.calls: list[tuple] = []
        self.fail: set[str] = set()  # method names that raise GatewayError
        self.subscription_status: str | None = "active"
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{self._seq}"

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail:
            raise GatewayError(f"{name} failed", status_code=500)

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def create_customer(self, name, email):
        self._call("create_customer", name, email)
        customer_id = self._next_id("c")
        self.customers[customer_id] = {"id": customer_id, "name": name, "email": email}
        return dict(self.customers[customer_id])

    async def get_customer(self, customer_id):
        self._call("get_customer", customer_id)
        if customer_id not in self.customers:
            raise GatewayError("customer not found", status_code=404)
        return dict(self.customers[customer_id])

    async def list_cards(self, customer_id, limit=20):
        self._call("list_cards", customer_id, limit)
        return {"list": list(self.cards.get(customer_id, {}).values())[:limit]}

    async def get_card(self, customer_id, card_id):
        self._call("get_card", customer_id, card_id)
        card = self.cards.get(customer_id, {}).get(card_id)
        if card is None:
            raise GatewayError("card not found", status_code=404)
        return dict(card)

    async def create_card(self, customer_id, token):
        self._call("create_card", customer_id, token)
        card_id = self._next_id("cs")
        card = {
            "id": card_id,
            "customer_id": customer_id,
            "card_no": "************1111",
            "expire": "2712",
            "brand": "VISA",
            "default_flag": "1",
        }
        self.cards.setdefault(customer_id, {})[card_id] = card
        return dict(card)

    async def delete_card(self, customer_id, card_id):
        self._call("delete_card", customer_id, card_id)
        if card_id not in self.cards.get(customer_id, {}):
            raise GatewayError("card not found", status_code=404)
        del self.cards[customer_id][card_id]
        return {"customer_id": customer_id, "id": card_id, "delete_flag": "1"}

    async def get_plans(self, limit=10):
        self._call("get_plans", limit)
        return {"list": list(self.plans)}

    async def create_subscription(self, payload):
        self._call("create_subscription", payload)
        subscription_id = self._next_id("su")
        record = {**payload, "id": subscription_id, "next_charge_date": "2026/11/18 00:00:00.000"}
        if self.subscription_status is not None:
            record["status"] = self.subscription_status
        self.subscriptions[subscription_id] = record
        return dict(record)

    async def get_subscription(self, subscription_id):
        self._call("get_subscription", subscription_id)
        if subscription_id not in self.subscriptions:
            raise GatewayError("subscription not found", status_code=404)
        return dict(self.subscriptions[subscription_id])

    async def cancel_subscription(self, subscription_id):
        self._call("cancel_subscription", subscription_id)
        if subscription_id not in self.subscriptions:
            raise GatewayError("subscription not found", status_code=404)
        self.subscriptions[subscription_id]["status"] = "canceled"
        return dict(self.subscriptions[subscription_id])

    async def get_results(self, subscription_id, limit=10):
        self._call("get_results", subscription_id, limit)
        return {"list": list(self.results)[:limit]}


@pytest_asyncio.fixture
async def clean_db():
    """Recreate all tables so each test starts from an empty database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
def fake_fincode():
    """Route every fincode dependency to an in-memory fake."""
    fake = FakeFincode()
    app.dependency_overrides[get_fincode_client] = lambda: fake
    app.dependency_overrides[get_optional_fincode_client] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_fincode_client, None)
    app.dependency_overrides.pop(get_optional_fincode_client, None)


@pytest_asyncio.fixture
async def client(clean_db, fake_fincode):
    """AsyncClient against the app; keeps cookies between requests like a browser."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def test_user(clean_db, fake_fincode):
    """Create a user (with a fincode customer known to the fake) and return (user_id, email, customer_id)."""
    customer = await fake_fincode.create_customer("Test User", TEST_EMAIL)
    fake_fincode.calls.clear()
    async with async_session_maker() as session:
        user = User(
            email=TEST_EMAIL,
            password_hash=hash_password(TEST_PASSWORD),
            fincode_customer_id=customer["id"],
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user.id, user.email, customer["id"]


@pytest_asyncio.fixture
async def logged_in(client, test_user):
    """Log test_user in through the API; the client now carries the session cookie."""
    resp = await client.post("/api/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
    assert resp.status_code == 200
    return test_user
