"""Tests for the reconciliation scanner and scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from entitlement_engine.common.exceptions import PaymentProviderError, PersistenceError
from entitlement_engine.entitlements.models import EntitlementModel
from entitlement_engine.entitlements.writer import ProvisioningOrigin
from entitlement_engine.events.schemas import ExternalTransaction
from entitlement_engine.provisioning.service import ProvisioningService
from entitlement_engine.reconciliation.scanner import ReconciliationScanner
from entitlement_engine.reconciliation.scheduler import ReconciliationScheduler
from entitlement_engine.tenants.models import TenantModel
from tests.conftest import FakeGateway, checkout_session

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
PAID_AT = NOW - timedelta(days=2)


@pytest.fixture
def service(settings):
    return ProvisioningService(settings, clock=lambda: NOW)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def scanner(settings, gateway, service, db):
    return ReconciliationScanner(settings, gateway, service, db, clock=lambda: NOW)


def session_obj(n: int, **kwargs) -> dict:
    kwargs.setdefault("created", PAID_AT)
    return checkout_session(session_id=f"cs_{n:03d}", user_id=f"user_{n % 7}", **kwargs)


async def entitlement_count(db) -> int:
    async with db.get_session() as session:
        return (await session.execute(select(func.count(EntitlementModel.id)))).scalar_one()


async def origin_of(db, transaction_id: str) -> str:
    async with db.get_session() as session:
        return (await session.execute(
            select(EntitlementModel.origin)
            .where(EntitlementModel.source_transaction_id == transaction_id)
        )).scalar_one()


class TestReconciliationScanner:
    async def test_fills_exactly_the_missing_subset(self, db, catalog, service, gateway, scanner):
        # 48 paid sessions; 45 were provisioned by webhook, 3 were lost and
        # one of those points at a misconfigured pass.
        for n in range(48):
            pass_id = "pass_nobudget" if n == 47 else "pass_clip10"
            gateway.add(session_obj(n, pass_id=pass_id))
        for obj in gateway.sessions[:45]:
            await service.run(db, ExternalTransaction.from_checkout_session(obj))

        report = await scanner.scan()

        assert report.examined == 48
        assert report.eligible == 48
        assert report.already_provisioned == 45
        assert report.gaps_found == 3
        assert report.gaps == ["cs_045", "cs_046", "cs_047"]
        assert report.created == 2
        assert report.raced == 0
        assert report.failed == 1
        failure = report.failures[0]
        assert failure.transaction_id == "cs_047"
        assert failure.code == "INVALID_PRODUCT_CONFIGURATION"
        assert failure.retryable is False
        assert report.finished_at is not None

        assert await entitlement_count(db) == 47
        assert await origin_of(db, "cs_045") == "reconciliation"
        assert await origin_of(db, "cs_000") == "webhook"

    async def test_second_scan_creates_nothing(self, db, catalog, gateway, scanner):
        for n in range(5):
            gateway.add(session_obj(n))

        first = await scanner.scan()
        second = await scanner.scan()

        assert first.created == 5
        assert second.created == 0
        assert second.already_provisioned == 5
        assert second.gaps_found == 0
        assert await entitlement_count(db) == 5

    async def test_default_window_is_trailing_days(self, db, catalog, gateway, scanner, settings):
        gateway.add(session_obj(1))
        gateway.add(session_obj(2, created=NOW - timedelta(days=settings.reconcile_window_days + 1)))

        report = await scanner.scan()

        assert report.window_end == NOW
        assert report.window_start == NOW - timedelta(days=settings.reconcile_window_days)
        assert report.examined == 1
        assert report.created == 1

    async def test_explicit_window(self, db, catalog, gateway, scanner):
        old = NOW - timedelta(days=30)
        gateway.add(session_obj(1, created=old))

        report = await scanner.scan(old - timedelta(hours=1), old + timedelta(hours=1))

        assert report.created == 1

    async def test_invalid_window(self, scanner):
        with pytest.raises(ValueError):
            await scanner.scan(NOW, NOW - timedelta(days=1))

    async def test_skips_ineligible_transactions(self, db, catalog, gateway, scanner):
        gateway.add(session_obj(1))
        gateway.add(session_obj(2, payment_status="unpaid"))
        gateway.add(session_obj(3, kind="gift_card"))
        gateway.add(session_obj(4, kind=None))

        report = await scanner.scan()

        assert report.examined == 4
        assert report.eligible == 1
        assert report.created == 1

    async def test_dry_run_writes_nothing(self, db, catalog, gateway, scanner):
        for n in range(3):
            gateway.add(session_obj(n))

        report = await scanner.scan(dry_run=True)

        assert report.dry_run is True
        assert report.gaps_found == 3
        assert report.gaps == ["cs_000", "cs_001", "cs_002"]
        assert report.created == 0
        assert await entitlement_count(db) == 0

    async def test_user_filter(self, db, catalog, gateway, scanner):
        for n in range(14):
            gateway.add(session_obj(n))

        report = await scanner.scan(user_external_id="user_3")

        assert report.examined == 14
        assert report.eligible == 2
        assert report.created == 2

    async def test_tenant_filter(self, db, catalog, gateway, scanner):
        async with db.get_session() as session:
            session.add(TenantModel(id="tenant_2", name="Oakwood", slug="oakwood"))
        gateway.add(session_obj(1))
        gateway.add(session_obj(2, tenant_id="tenant_2"))

        report = await scanner.scan(tenant_id="tenant_1")

        assert report.eligible == 1
        assert report.gaps == ["cs_001"]

    async def test_tenant_filter_resolves_slug(self, db, catalog, gateway, scanner):
        gateway.add(session_obj(1, tenant_id=None, extra_metadata={"tenantSlug": "dancecity"}))

        report = await scanner.scan(tenant_id="tenant_1")

        assert report.eligible == 1
        assert report.created == 1
        assert await entitlement_count(db) == 1

    async def test_tenant_filter_falls_back_to_product_tenant(self, db, catalog, gateway, scanner):
        gateway.add(session_obj(1, tenant_id=None))

        other = await scanner.scan(tenant_id="tenant_2")
        assert other.eligible == 0

        report = await scanner.scan(tenant_id="tenant_1")
        assert report.eligible == 1
        assert report.created == 1

    async def test_transient_failures_are_isolated(self, db, catalog, settings, gateway):
        class FlakyWriter:
            def __init__(self):
                from entitlement_engine.entitlements.writer import ProvisioningWriter
                self.real = ProvisioningWriter()

            async def create(self, session, draft):
                if draft.source_transaction_id == "cs_001":
                    raise PersistenceError("database is locked")
                return await self.real.create(session, draft)

        service = ProvisioningService(settings, writer=FlakyWriter(), clock=lambda: NOW)
        scanner = ReconciliationScanner(settings, gateway, service, db, clock=lambda: NOW)
        for n in range(3):
            gateway.add(session_obj(n))

        report = await scanner.scan()

        assert report.created == 2
        assert report.failed == 1
        assert report.failures[0].transaction_id == "cs_001"
        assert report.failures[0].code == "PERSISTENCE_ERROR"
        assert report.failures[0].retryable is True

    async def test_unexpected_errors_are_isolated(self, db, catalog, settings, gateway):
        class ExplodingGuard:
            async def check(self, session, transaction_id, payment_intent_id=None):
                raise RuntimeError("boom")

        service = ProvisioningService(settings, guard=ExplodingGuard(), clock=lambda: NOW)
        scanner = ReconciliationScanner(settings, gateway, service, db, clock=lambda: NOW)
        gateway.add(session_obj(1))
        gateway.add(session_obj(2))

        report = await scanner.scan()

        assert report.failed == 2
        assert {f.code for f in report.failures} == {"UNEXPECTED_ERROR"}

    async def test_race_counted_when_webhook_wins(self, db, catalog, settings, gateway):
        class LateWebhook:
            """Provisions the same transaction just after the scanner's guard check."""

            def __init__(self, inner):
                self.inner = inner

            async def run(self, db, transaction, origin):
                await self.inner.run(db, transaction, ProvisioningOrigin.WEBHOOK)
                return await self.inner.run(db, transaction, origin)

            def __getattr__(self, name):
                return getattr(self.inner, name)

        service = ProvisioningService(settings, clock=lambda: NOW)
        scanner = ReconciliationScanner(settings, gateway, LateWebhook(service), db, clock=lambda: NOW)
        gateway.add(session_obj(1))

        report = await scanner.scan()

        assert report.gaps_found == 1
        assert report.created == 0
        assert report.raced == 1
        assert await origin_of(db, "cs_001") == "webhook"

    async def test_provider_failure_propagates(self, db, settings, service):
        scanner = ReconciliationScanner(
            settings, FakeGateway(fail=True), service, db, clock=lambda: NOW,
        )
        with pytest.raises(PaymentProviderError):
            await scanner.scan()


class TestReconciliationScheduler:
    async def test_runs_periodically_until_stopped(self):
        class CountingScanner:
            calls = 0

            async def scan(self):
                CountingScanner.calls += 1

        scheduler = ReconciliationScheduler(CountingScanner(), interval=0.01)
        scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert scheduler.running is False
        assert CountingScanner.calls >= 2
        assert scheduler.runs == CountingScanner.calls

    async def test_failed_scan_does_not_stop_loop(self):
        class FailingScanner:
            calls = 0

            async def scan(self):
                FailingScanner.calls += 1
                raise PaymentProviderError("Stripe unavailable")

        scheduler = ReconciliationScheduler(FailingScanner(), interval=0.01)
        scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert FailingScanner.calls >= 2

    async def test_stop_without_start(self):
        scheduler = ReconciliationScheduler(object(), interval=60)
        await scheduler.stop()
        assert scheduler.running is False

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            ReconciliationScheduler(object(), interval=0)
