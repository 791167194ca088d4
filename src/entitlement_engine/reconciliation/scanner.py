"""Reconciliation scanner — fills entitlements missing for successful payments.

Lists completed checkout sessions from Stripe over a time window, checks each
provisionable one against the entitlement store, and provisions the gaps
through the same pipeline the webhook uses. Every gap is independently
idempotent, so a scan may be re-run or resumed after cancellation at any time.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from entitlement_engine.common.config import EngineSettings
from entitlement_engine.common.database import DatabaseManager
from entitlement_engine.common.exceptions import EngineError
from entitlement_engine.entitlements.guard import AlreadyProvisioned
from entitlement_engine.entitlements.writer import ProvisioningOrigin
from entitlement_engine.events.schemas import ExternalTransaction
from entitlement_engine.payments.gateway import StripeGateway
from entitlement_engine.provisioning.schemas import ProvisioningStatus
from entitlement_engine.provisioning.service import ProvisioningService
from entitlement_engine.reconciliation.schemas import GapFailure, ReconciliationReport

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationScanner:
    """Diffs the payment ledger against provisioned entitlements."""

    def __init__(
        self,
        settings: EngineSettings,
        gateway: StripeGateway,
        provisioning: ProvisioningService,
        db: DatabaseManager,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.provisioning = provisioning
        self.db = db
        self.clock = clock or _utcnow

    async def _matches_filters(
        self,
        transaction: ExternalTransaction,
        user_external_id: Optional[str],
        tenant_id: Optional[str],
    ) -> bool:
        meta = transaction.metadata
        if user_external_id is not None and meta.user_external_id != user_external_id:
            return False
        if tenant_id is not None:
            # Same resolution order as provisioning: id, slug, then product.
            async with self.db.get_session() as session:
                resolved = await self.provisioning.tenant_of(session, transaction)
            if resolved != tenant_id:
                return False
        return True

    async def _is_provisioned(self, transaction: ExternalTransaction) -> bool:
        async with self.db.get_session() as session:
            result = await self.provisioning.guard.check(
                session, transaction.id, transaction.payment_intent_id,
            )
        return isinstance(result, AlreadyProvisioned)

    async def scan(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        *,
        user_external_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> ReconciliationReport:
        """Run one reconciliation pass over ``[start, end)``.

        Defaults to the trailing ``reconcile_window_days``. Failures on
        individual transactions are recorded in the report and never abort
        the scan. With ``dry_run`` gaps are reported but nothing is written.
        """
        end = end or self.clock()
        start = start or end - timedelta(days=self.settings.reconcile_window_days)
        if start >= end:
            raise ValueError("Reconciliation window start must be before its end")

        report = ReconciliationReport(
            window_start=start,
            window_end=end,
            started_at=self.clock(),
            dry_run=dry_run,
            user_external_id=user_external_id,
            tenant_id=tenant_id,
        )
        logger.info("Reconciliation started", extra={"report": report.summary()})

        async for transaction in self.gateway.list_transactions(start, end):
            report.examined += 1
            if not self.provisioning.is_eligible(transaction):
                continue
            if not await self._matches_filters(transaction, user_external_id, tenant_id):
                continue
            report.eligible += 1

            try:
                if await self._is_provisioned(transaction):
                    report.already_provisioned += 1
                    continue

                report.gaps_found += 1
                report.gaps.append(transaction.id)
                logger.info(
                    "Missing entitlement found",
                    extra={
                        "transaction_id": transaction.id,
                        "user_external_id": transaction.metadata.user_external_id,
                        "product_id": transaction.metadata.product_id,
                        "dry_run": dry_run,
                    },
                )
                if dry_run:
                    continue

                result = await self.provisioning.run(
                    self.db, transaction, ProvisioningOrigin.RECONCILIATION,
                )
            except EngineError as exc:
                report.failures.append(GapFailure(
                    transaction_id=transaction.id,
                    code=exc.code,
                    reason=exc.message,
                    retryable=exc.retryable,
                ))
                logger.warning(
                    "Reconciliation could not fill gap",
                    extra={
                        "transaction_id": transaction.id,
                        "code": exc.code,
                        "field": getattr(exc, "field", None),
                        "error": exc.message,
                    },
                )
                continue
            except Exception as exc:
                report.failures.append(GapFailure(
                    transaction_id=transaction.id,
                    code="UNEXPECTED_ERROR",
                    reason=str(exc),
                    retryable=True,
                ))
                logger.exception(
                    "Unexpected error during reconciliation",
                    extra={"transaction_id": transaction.id},
                )
                continue

            if result.status == ProvisioningStatus.CREATED:
                report.created += 1
            else:
                # Another path provisioned it between the check and the write.
                report.raced += 1

        report.finished_at = self.clock()
        log = logger.warning if report.failures else logger.info
        log(
            "Reconciliation finished",
            extra={
                "report": report.summary(),
                "gaps": report.gaps,
                "failures": [f.model_dump() for f in report.failures],
            },
        )
        return report
