"""ProvisioningService — turns a successful payment into exactly one entitlement."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_engine.catalog.expiry import compute_expiry
from entitlement_engine.catalog.kinds import map_entitlement_type
from entitlement_engine.catalog.service import ProductResolver
from entitlement_engine.catalog.validation import ValidatedProduct, validate_product
from entitlement_engine.common.config import EngineSettings
from entitlement_engine.common.database import DatabaseManager
from entitlement_engine.common.exceptions import MissingMetadataError, PersistenceError
from entitlement_engine.entitlements.guard import AlreadyProvisioned, IdempotencyGuard
from entitlement_engine.entitlements.models import EntitlementModel
from entitlement_engine.entitlements.writer import (
    EntitlementDraft,
    ProvisioningOrigin,
    ProvisioningWriter,
)
from entitlement_engine.events.schemas import ExternalTransaction, PaymentEvent
from entitlement_engine.identity.service import IdentityResolver
from entitlement_engine.provisioning.schemas import ProvisioningResult, ProvisioningStatus
from entitlement_engine.tenants.service import TenantService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _entitlement_result(
    status: ProvisioningStatus,
    entitlement: EntitlementModel,
    origin: ProvisioningOrigin,
) -> ProvisioningResult:
    return ProvisioningResult(
        status=status,
        transaction_id=entitlement.source_transaction_id,
        origin=origin,
        entitlement_id=entitlement.id,
        user_id=entitlement.user_id,
        product_id=entitlement.product_id,
        kind=entitlement.kind,
        activated_at=entitlement.activated_at,
        expires_at=entitlement.expires_at,
        remaining_uses=entitlement.remaining_uses,
    )


class ProvisioningService:
    """Orchestrates guard, catalog, identity, expiry, type mapping and write.

    Permanent defects (unknown product, bad catalog configuration, missing
    metadata) and store failures are raised as EngineError subclasses; the
    caller decides how to surface them.
    """

    def __init__(
        self,
        settings: EngineSettings,
        guard: Optional[IdempotencyGuard] = None,
        products: Optional[ProductResolver] = None,
        identity: Optional[IdentityResolver] = None,
        tenants: Optional[TenantService] = None,
        writer: Optional[ProvisioningWriter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.guard = guard or IdempotencyGuard()
        self.products = products or ProductResolver()
        self.identity = identity or IdentityResolver(
            default_role=settings.default_user_role,
            default_name=settings.default_user_name,
        )
        self.tenants = tenants or TenantService()
        self.writer = writer or ProvisioningWriter()
        self.clock = clock or _utcnow

    # ── Eligibility ──

    def ineligibility_reason(self, transaction: ExternalTransaction) -> Optional[str]:
        """Why this transaction must not be provisioned, or None if it may be."""
        if not transaction.is_paid:
            return f"payment_status is '{transaction.payment_status}'"
        if transaction.kind not in self.settings.provisionable_kinds:
            return f"transaction type '{transaction.kind}' is not provisionable"
        return None

    def is_eligible(self, transaction: ExternalTransaction) -> bool:
        return self.ineligibility_reason(transaction) is None

    # ── Pipeline ──

    async def _lookup_tenant_id(
        self,
        session: AsyncSession,
        transaction: ExternalTransaction,
        product_tenant_id: Optional[str],
    ) -> Optional[str]:
        """Metadata tenantId, then tenantSlug, then the product's tenant."""
        meta = transaction.metadata
        if meta.tenant_id:
            tenant = await self.tenants.get_by_id(session, meta.tenant_id)
            if tenant is not None:
                return tenant.id
            logger.warning(
                "Unknown tenant in transaction metadata",
                extra={"transaction_id": transaction.id, "tenant_id": meta.tenant_id},
            )
        if meta.tenant_slug:
            tenant = await self.tenants.get_by_slug(session, meta.tenant_slug)
            if tenant is not None:
                return tenant.id
        return product_tenant_id or None

    async def tenant_of(
        self, session: AsyncSession, transaction: ExternalTransaction,
    ) -> Optional[str]:
        """Tenant the transaction would be provisioned into, or None if unresolvable."""
        product_tenant_id = None
        if transaction.metadata.product_id:
            product = await self.products.get_product(session, transaction.metadata.product_id)
            if product is not None:
                product_tenant_id = product.tenant_id
        return await self._lookup_tenant_id(session, transaction, product_tenant_id)

    async def _resolve_tenant_id(
        self,
        session: AsyncSession,
        transaction: ExternalTransaction,
        product: ValidatedProduct,
    ) -> str:
        tenant_id = await self._lookup_tenant_id(session, transaction, product.tenant_id)
        if tenant_id is None:
            raise MissingMetadataError("tenantId")
        return tenant_id

    async def provision(
        self,
        session: AsyncSession,
        transaction: ExternalTransaction,
        origin: ProvisioningOrigin = ProvisioningOrigin.WEBHOOK,
    ) -> ProvisioningResult:
        """Provision one transaction inside the caller's session.

        Steps:
        1. Idempotency guard (already provisioned is a success)
        2. Product lookup and validation, before any write
        3. Tenant and user resolution (user created lazily)
        4. Expiry and entitlement kind
        5. Create-if-absent write keyed by the transaction id
        """
        existing = await self.guard.check(
            session, transaction.id, transaction.payment_intent_id,
        )
        if isinstance(existing, AlreadyProvisioned):
            logger.info(
                "Transaction already provisioned",
                extra={
                    "transaction_id": transaction.id,
                    "entitlement_id": existing.entitlement.id,
                    "origin": origin.value,
                },
            )
            return _entitlement_result(
                ProvisioningStatus.ALREADY_PROVISIONED, existing.entitlement, origin,
            )

        meta = transaction.metadata
        if not meta.user_external_id:
            raise MissingMetadataError("userId")

        product_row = await self.products.resolve(session, meta.product_id)
        product = validate_product(product_row, now=self.clock())

        tenant_id = await self._resolve_tenant_id(session, transaction, product)
        user = await self.identity.resolve(
            session,
            meta.user_external_id,
            name=transaction.customer_name,
            email=meta.user_email or transaction.customer_email,
            tenant_id=tenant_id,
        )

        activated_at = transaction.created
        expires_at = compute_expiry(product.policy, activated_at)
        kind, remaining_uses = map_entitlement_type(product)

        amount = transaction.amount_total
        if amount is None:
            amount = product.price

        draft = EntitlementDraft(
            user_id=user.id,
            tenant_id=tenant_id,
            product_id=product.id,
            product_name=product.name,
            product_category=product.category.value,
            kind=kind,
            activated_at=activated_at,
            expires_at=expires_at,
            remaining_uses=remaining_uses,
            amount_paid=amount,
            currency=(transaction.currency or self.settings.checkout_currency).lower(),
            source_transaction_id=transaction.id,
            payment_intent_id=transaction.payment_intent_id,
            origin=origin,
        )
        outcome = await self.writer.create(session, draft)

        status = (
            ProvisioningStatus.CREATED if outcome.created
            else ProvisioningStatus.ALREADY_PROVISIONED
        )
        logger.info(
            "Entitlement provisioned" if outcome.created else "Entitlement already existed at write",
            extra={
                "transaction_id": transaction.id,
                "entitlement_id": outcome.entitlement.id,
                "user_id": user.id,
                "product_id": product.id,
                "kind": kind.value,
                "expires_at": expires_at.isoformat(),
                "origin": origin.value,
            },
        )
        return _entitlement_result(status, outcome.entitlement, origin)

    async def run(
        self,
        db: DatabaseManager,
        transaction: ExternalTransaction,
        origin: ProvisioningOrigin = ProvisioningOrigin.WEBHOOK,
    ) -> ProvisioningResult:
        """Provision in a dedicated session, bounded by ``provision_timeout``."""

        async def _attempt() -> ProvisioningResult:
            async with db.get_session() as session:
                return await self.provision(session, transaction, origin)

        try:
            return await asyncio.wait_for(_attempt(), timeout=self.settings.provision_timeout)
        except asyncio.TimeoutError as exc:
            logger.error(
                "Provisioning timed out",
                extra={"transaction_id": transaction.id, "timeout": self.settings.provision_timeout},
            )
            raise PersistenceError(
                f"Provisioning '{transaction.id}' timed out after {self.settings.provision_timeout}s"
            ) from exc
        except SQLAlchemyError as exc:
            logger.exception("Provisioning commit failed", extra={"transaction_id": transaction.id})
            raise PersistenceError(f"Failed to commit provisioning for '{transaction.id}': {exc}") from exc

    async def handle_event(
        self, db: DatabaseManager, event: PaymentEvent,
    ) -> ProvisioningResult:
        """Provision a verified webhook event, ignoring kinds that grant nothing."""
        if not event.completes_purchase:
            logger.info(
                "Ignoring webhook event",
                extra={"event_id": event.id, "event_type": event.kind},
            )
            return ProvisioningResult(
                status=ProvisioningStatus.IGNORED,
                transaction_id=event.transaction.id if event.transaction else None,
                error=f"Event type '{event.kind}' does not complete a purchase",
            )

        transaction = event.transaction
        reason = self.ineligibility_reason(transaction)
        if reason is not None:
            logger.info(
                "Ignoring non-provisionable transaction",
                extra={"event_id": event.id, "transaction_id": transaction.id, "reason": reason},
            )
            return ProvisioningResult(
                status=ProvisioningStatus.IGNORED,
                transaction_id=transaction.id,
                error=reason,
            )

        return await self.run(db, transaction, ProvisioningOrigin.WEBHOOK)
