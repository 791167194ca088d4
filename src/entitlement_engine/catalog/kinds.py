"""Entitlement kinds and the category → kind mapping table."""

from enum import Enum
from typing import Optional

from entitlement_engine.catalog.validation import ProductCategory, ValidatedProduct


class EntitlementKind(str, Enum):
    SINGLE = "single"
    MULTI_PASS = "multi-pass"
    CLIP_CARD = "clip-card"
    MONTHLY = "monthly"


# category → (kind, usage source); "budget" reads product.usage_budget,
# an int is a fixed allowance, None is unlimited.
ENTITLEMENT_TYPES: dict[ProductCategory, tuple[EntitlementKind, object]] = {
    ProductCategory.SINGLE: (EntitlementKind.SINGLE, 1),
    ProductCategory.MULTI_PASS: (EntitlementKind.MULTI_PASS, "budget"),
    ProductCategory.MULTI: (EntitlementKind.CLIP_CARD, "budget"),
    ProductCategory.UNLIMITED: (EntitlementKind.MONTHLY, None),
}


def map_entitlement_type(product: ValidatedProduct) -> tuple[EntitlementKind, Optional[int]]:
    """Return (kind, initial remaining uses) for a validated product."""
    kind, usage = ENTITLEMENT_TYPES[product.category]
    if usage == "budget":
        return kind, product.usage_budget
    return kind, usage
