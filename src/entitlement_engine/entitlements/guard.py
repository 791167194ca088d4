"""Idempotency guard — has this transaction already been provisioned?"""

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_engine.common.exceptions import PersistenceError
from entitlement_engine.entitlements.models import EntitlementModel


@dataclass(frozen=True)
class AlreadyProvisioned:
    entitlement: EntitlementModel


@dataclass(frozen=True)
class NotProvisioned:
    pass


GuardResult = Union[AlreadyProvisioned, NotProvisioned]


class IdempotencyGuard:
    """Read-before-write fast path.

    The unique key on ``source_transaction_id`` enforced by the writer is the
    final arbiter; a NotProvisioned answer may be stale by the time the write
    happens.
    """

    async def check(
        self,
        session: AsyncSession,
        transaction_id: str,
        payment_intent_id: Optional[str] = None,
    ) -> GuardResult:
        condition = EntitlementModel.source_transaction_id == transaction_id
        if payment_intent_id:
            condition = or_(condition, EntitlementModel.payment_intent_id == payment_intent_id)

        try:
            result = await session.execute(
                select(EntitlementModel).where(condition).limit(1)
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Idempotency lookup failed: {exc}") from exc

        existing = result.scalar_one_or_none()
        if existing is not None:
            return AlreadyProvisioned(existing)
        return NotProvisioned()
