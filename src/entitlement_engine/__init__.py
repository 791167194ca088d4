"""Entitlement-Engine: pass provisioning from Stripe payments, with reconciliation."""

from entitlement_engine.catalog.expiry import compute_expiry
from entitlement_engine.catalog.kinds import EntitlementKind, map_entitlement_type
from entitlement_engine.catalog.validation import ProductCategory, validate_product
from entitlement_engine.events.verifier import construct_event, verify_signature, verify_signature_multi

__all__ = [
    "EntitlementKind",
    "ProductCategory",
    "compute_expiry",
    "construct_event",
    "map_entitlement_type",
    "validate_product",
    "verify_signature",
    "verify_signature_multi",
]
__version__ = "0.1.0"
