"""Shared test fixtures for Entitlement-Engine."""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from entitlement_engine.common.config import EngineSettings
from entitlement_engine.common.database import DatabaseManager
from entitlement_engine.common.exceptions import PaymentProviderError


API_KEY = "test-admin-api-key"
WEBHOOK_SECRET = "whsec_test_secret"
STRIPE_API_KEY = "sk_test_123"


def make_settings(**overrides) -> EngineSettings:
    defaults = {
        "db_url": "sqlite+aiosqlite://",
        "api_key": API_KEY,
        "stripe_api_key": STRIPE_API_KEY,
        "stripe_webhook_secret": WEBHOOK_SECRET,
        "stripe_webhook_secret_previous": "",
        "stripe_webhook_secrets": "",
    }
    defaults.update(overrides)
    return EngineSettings(**defaults)


def checkout_session(
    session_id: str = "cs_test_1",
    pass_id: str | None = "pass_clip10",
    user_id: str | None = "user_1",
    tenant_id: str | None = "tenant_1",
    created: datetime | int | None = None,
    amount_total: int | None = 180000,
    currency: str | None = "nok",
    payment_status: str = "paid",
    kind: str | None = "pass_purchase",
    payment_intent: str | None = None,
    email: str | None = "dancer@example.com",
    name: str | None = "Ida Dancer",
    extra_metadata: dict | None = None,
) -> dict:
    """A Stripe ``checkout.session`` object as returned by the API."""
    if created is None:
        created = int(time.time()) - 60
    elif isinstance(created, datetime):
        created = int(created.timestamp())

    metadata = {
        "passId": pass_id,
        "userId": user_id,
        "tenantId": tenant_id,
        "userEmail": email,
        "type": kind,
        **(extra_metadata or {}),
    }
    return {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": amount_total,
        "currency": currency,
        "created": created,
        "status": "complete",
        "payment_status": payment_status,
        "payment_intent": payment_intent or f"pi_{session_id}",
        "customer_details": {"name": name, "email": email},
        "metadata": {k: v for k, v in metadata.items() if v is not None},
    }


def event_payload(obj: dict, event_type: str = "checkout.session.completed", event_id: str = "evt_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "livemode": False,
        "data": {"object": obj},
    }).encode()


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    sig = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={sig}"


class FakeGateway:
    """In-memory stand-in for StripeGateway."""

    def __init__(self, sessions: list[dict] | None = None, fail: bool = False):
        self.sessions = list(sessions or [])
        self.fail = fail
        self.list_calls: list[tuple[datetime, datetime]] = []

    def add(self, obj: dict) -> None:
        self.sessions.append(obj)

    async def list_transactions(self, start: datetime, end: datetime):
        from entitlement_engine.events.schemas import ExternalTransaction

        self.list_calls.append((start, end))
        if self.fail:
            raise PaymentProviderError("Stripe unavailable", status_code=500)
        lo, hi = start.timestamp(), end.timestamp()
        for obj in self.sessions:
            if lo <= obj["created"] < hi:
                yield ExternalTransaction.from_checkout_session(obj)

    async def get_transaction(self, transaction_id: str):
        from entitlement_engine.events.schemas import ExternalTransaction

        if self.fail:
            raise PaymentProviderError("Stripe unavailable", status_code=500)
        for obj in self.sessions:
            if obj["id"] == transaction_id:
                return ExternalTransaction.from_checkout_session(obj)
        raise PaymentProviderError("No such checkout session", status_code=404)

    async def aclose(self) -> None:
        pass


async def seed(db: DatabaseManager) -> dict:
    """Seed one tenant and a catalog covering every validity/budget shape."""
    from entitlement_engine.catalog.service import ProductResolver
    from entitlement_engine.tenants.models import TenantModel

    products = ProductResolver()
    async with db.get_session() as session:
        session.add(TenantModel(id="tenant_1", name="Dance City", slug="dancecity"))
        await session.flush()

        async def add(product_id, name, category, **kwargs):
            await products.create_product(
                session, name=name, category=category, tenant_id="tenant_1",
                product_id=product_id, **kwargs,
            )

        await add("pass_clip10", "10-class clip card", "multi",
                  price=180000, usage_budget=10, validity_type="days", validity_days=90)
        await add("pass_single", "Drop-in", "single",
                  price=25000, validity_type="days", validity_days=30)
        await add("pass_monthly", "Unlimited month", "unlimited",
                  price=99000, validity_days=30)
        await add("pass_multipass", "5-class pass", "multi-pass",
                  price=100000, usage_budget=5, validity_days=60)
        await add("pass_expired", "Spring term", "unlimited",
                  price=150000, validity_type="date",
                  expiry_date=datetime(2024, 1, 1, tzinfo=timezone.utc))
        await add("pass_nobudget", "Broken multi-pass", "multi-pass",
                  price=100000, usage_budget=None, validity_days=30)
        await add("pass_inactive", "Retired pass", "single",
                  price=20000, validity_days=30, is_active=False)
    return {"tenant_id": "tenant_1"}


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
async def catalog(db):
    return await seed(db)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def app(monkeypatch):
    """Create a test app with in-memory DB."""
    monkeypatch.setenv("ENTITLEMENT_DB_URL", "sqlite+aiosqlite://")
    monkeypatch.setenv("ENTITLEMENT_API_KEY", API_KEY)
    monkeypatch.setenv("ENTITLEMENT_STRIPE_API_KEY", STRIPE_API_KEY)
    monkeypatch.setenv("ENTITLEMENT_STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)

    # Clear caches and singletons so new env vars take effect
    from entitlement_engine.common.config import get_settings
    get_settings.cache_clear()

    from entitlement_engine.deps import reset_singletons
    reset_singletons()

    from entitlement_engine.app import create_app
    yield create_app()

    reset_singletons()
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from entitlement_engine.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
async def app_catalog(client):
    from entitlement_engine.deps import get_db
    return await seed(get_db())


@pytest.fixture
def app_gateway(app, monkeypatch):
    """Install a FakeGateway as the app's Stripe gateway."""
    import entitlement_engine.deps as deps

    gateway = FakeGateway()
    monkeypatch.setattr(deps, "_gateway", gateway)
    return gateway


@pytest.fixture
def admin_headers():
    return {"X-Admin-Api-Key": API_KEY}
