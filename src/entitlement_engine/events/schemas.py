"""Typed payment events and the provider-owned transaction record."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"

# Event kinds that can complete a purchase.
PROVISIONING_EVENT_KINDS: frozenset[str] = frozenset({
    CHECKOUT_COMPLETED,
    ASYNC_PAYMENT_SUCCEEDED,
})

PAID_STATUSES: frozenset[str] = frozenset({"paid", "no_payment_required"})


class TransactionMetadata(BaseModel):
    """Metadata attached to the checkout session when it was created."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    product_id: Optional[str] = Field(default=None, alias="passId")
    user_external_id: Optional[str] = Field(default=None, alias="userId")
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    tenant_slug: Optional[str] = Field(default=None, alias="tenantSlug")
    kind: Optional[str] = Field(default=None, alias="type")


class ExternalTransaction(BaseModel):
    """A completed checkout session as reported by Stripe. Read-only."""

    model_config = ConfigDict(frozen=True)

    id: str
    payment_intent_id: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    created: datetime
    status: str = ""
    payment_status: str = ""
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: TransactionMetadata = Field(default_factory=TransactionMetadata)

    @property
    def kind(self) -> Optional[str]:
        return self.metadata.kind

    @property
    def is_paid(self) -> bool:
        return self.payment_status in PAID_STATUSES

    @classmethod
    def from_checkout_session(cls, obj: dict[str, Any]) -> "ExternalTransaction":
        """Build from a Stripe ``checkout.session`` object."""
        details = obj.get("customer_details") or {}
        payment_intent = obj.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")

        return cls(
            id=obj["id"],
            payment_intent_id=payment_intent,
            amount_total=obj.get("amount_total"),
            currency=obj.get("currency"),
            created=datetime.fromtimestamp(int(obj.get("created") or 0), tz=timezone.utc),
            status=obj.get("status") or "",
            payment_status=obj.get("payment_status") or "",
            customer_name=details.get("name"),
            customer_email=details.get("email") or obj.get("customer_email"),
            metadata=TransactionMetadata.model_validate(obj.get("metadata") or {}),
        )


class PaymentEvent(BaseModel):
    """A verified webhook event, discriminated by ``kind``."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: str
    created: Optional[datetime] = None
    livemode: bool = False
    transaction: Optional[ExternalTransaction] = None

    @property
    def completes_purchase(self) -> bool:
        """True if this event reports a paid checkout that may need provisioning."""
        return (
            self.kind in PROVISIONING_EVENT_KINDS
            and self.transaction is not None
            and self.transaction.is_paid
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PaymentEvent":
        kind = payload.get("type") or ""
        obj = (payload.get("data") or {}).get("object") or {}

        transaction = None
        if obj.get("object") == "checkout.session" or kind in PROVISIONING_EVENT_KINDS:
            transaction = ExternalTransaction.from_checkout_session(obj)

        created = payload.get("created")
        return cls(
            id=payload.get("id") or "",
            kind=kind,
            created=datetime.fromtimestamp(int(created), tz=timezone.utc) if created else None,
            livemode=bool(payload.get("livemode", False)),
            transaction=transaction,
        )
