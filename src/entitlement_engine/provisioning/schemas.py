"""Pydantic schemas for provisioning outcomes and checkout creation."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from entitlement_engine.entitlements.writer import ProvisioningOrigin


class ProvisioningStatus(str, Enum):
    CREATED = "created"
    ALREADY_PROVISIONED = "already_provisioned"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"


class ProvisioningResult(BaseModel):
    """Result of one provisioning attempt."""

    status: ProvisioningStatus
    transaction_id: Optional[str] = None
    origin: Optional[ProvisioningOrigin] = None
    entitlement_id: Optional[str] = None
    user_id: Optional[str] = None
    product_id: Optional[str] = None
    kind: Optional[str] = None
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    remaining_uses: Optional[int] = None
    code: Optional[str] = None
    field: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (
            ProvisioningStatus.CREATED,
            ProvisioningStatus.ALREADY_PROVISIONED,
        )


class CheckoutRequest(BaseModel):
    pass_id: str
    user_id: str
    user_email: Optional[str] = None
    tenant_id: Optional[str] = None
    success_url: str
    cancel_url: str


class CheckoutResponse(BaseModel):
    session_id: str
    url: str
