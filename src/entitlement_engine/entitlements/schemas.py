"""Pydantic schemas for entitlement diagnostics."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class EntitlementResponse(BaseModel):
    id: str
    user_id: str
    tenant_id: Optional[str] = None
    product_id: str
    product_name: str
    product_category: str
    kind: str
    activated_at: datetime
    expires_at: datetime
    remaining_uses: Optional[int] = None
    amount_paid: int
    currency: str
    is_active: bool
    source_transaction_id: str
    payment_intent_id: Optional[str] = None
    origin: str
    created_at: datetime

    model_config = {"from_attributes": True}
