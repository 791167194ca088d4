"""Provisioning writer — the single create that brings an entitlement into existence."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_engine.catalog.kinds import EntitlementKind
from entitlement_engine.common.database import insert_if_absent
from entitlement_engine.common.exceptions import PersistenceError
from entitlement_engine.common.models import generate_uuid, utcnow
from entitlement_engine.entitlements.models import EntitlementModel

logger = logging.getLogger(__name__)


class ProvisioningOrigin(str, Enum):
    WEBHOOK = "webhook"
    RECONCILIATION = "reconciliation"
    REPLAY = "replay"


@dataclass(frozen=True)
class EntitlementDraft:
    """Everything needed to create an entitlement, fully resolved."""

    user_id: str
    tenant_id: Optional[str]
    product_id: str
    product_name: str
    product_category: str
    kind: EntitlementKind
    activated_at: datetime
    expires_at: datetime
    remaining_uses: Optional[int]
    amount_paid: int
    currency: str
    source_transaction_id: str
    payment_intent_id: Optional[str]
    origin: ProvisioningOrigin


@dataclass(frozen=True)
class WriteOutcome:
    created: bool
    entitlement: EntitlementModel


class ProvisioningWriter:
    """Creates entitlements keyed by their source transaction id."""

    async def create(self, session: AsyncSession, draft: EntitlementDraft) -> WriteOutcome:
        """Insert the entitlement unless one already exists for the transaction.

        A duplicate (another caller won the race) is a successful outcome with
        ``created=False``. Any other store failure raises PersistenceError.
        """
        now = utcnow()
        values = {
            "id": generate_uuid(),
            "user_id": draft.user_id,
            "tenant_id": draft.tenant_id,
            "product_id": draft.product_id,
            "product_name": draft.product_name,
            "product_category": draft.product_category,
            "kind": draft.kind.value,
            "activated_at": draft.activated_at,
            "expires_at": draft.expires_at,
            "remaining_uses": draft.remaining_uses,
            "amount_paid": draft.amount_paid,
            "currency": draft.currency,
            "is_active": True,
            "source_transaction_id": draft.source_transaction_id,
            "payment_intent_id": draft.payment_intent_id,
            "origin": draft.origin.value,
            "created_at": now,
            "updated_at": now,
        }

        try:
            created = await insert_if_absent(
                session, EntitlementModel, values,
                conflict_column="source_transaction_id",
            )
            result = await session.execute(
                select(EntitlementModel).where(
                    EntitlementModel.source_transaction_id == draft.source_transaction_id
                )
            )
            entitlement = result.scalar_one()
        except SQLAlchemyError as exc:
            logger.exception(
                "Entitlement write failed",
                extra={"source_transaction_id": draft.source_transaction_id},
            )
            raise PersistenceError(
                f"Failed to persist entitlement for '{draft.source_transaction_id}': {exc}"
            ) from exc

        if not created:
            logger.info(
                "Entitlement already exists; duplicate create ignored",
                extra={
                    "source_transaction_id": draft.source_transaction_id,
                    "entitlement_id": entitlement.id,
                },
            )
        return WriteOutcome(created=created, entitlement=entitlement)
