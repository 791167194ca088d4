"""Product validation — turns a raw catalog row into a provisionable product.

A product is provisionable when:
- its category is one of ``ProductCategory``
- categories that carry a usage budget have a positive integer budget
- it has a validity policy: a fixed expiry instant in the future, or a
  positive number of days from activation

A fixed expiry that has already passed is a configuration error, never an
immediately-expired entitlement.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from entitlement_engine.catalog.models import ProductModel
from entitlement_engine.common.exceptions import InvalidProductConfigurationError

logger = logging.getLogger(__name__)


class ProductCategory(str, Enum):
    SINGLE = "single"
    MULTI_PASS = "multi-pass"
    MULTI = "multi"
    UNLIMITED = "unlimited"


BUDGETED_CATEGORIES: frozenset[ProductCategory] = frozenset({
    ProductCategory.MULTI_PASS,
    ProductCategory.MULTI,
})

VALIDITY_DATE = "date"
VALIDITY_DAYS = "days"


@dataclass(frozen=True)
class FixedExpiry:
    expires_at: datetime


@dataclass(frozen=True)
class RelativeDuration:
    duration: timedelta


ValidityPolicy = Union[FixedExpiry, RelativeDuration]


@dataclass(frozen=True)
class ValidatedProduct:
    id: str
    name: str
    tenant_id: Optional[str]
    category: ProductCategory
    price: int
    usage_budget: Optional[int]
    policy: ValidityPolicy
    is_active: bool


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def parse_category(raw: Optional[str]) -> ProductCategory:
    try:
        return ProductCategory(raw)
    except ValueError:
        raise InvalidProductConfigurationError(
            "category", f"Unknown product category: {raw!r}"
        ) from None


def resolve_validity_policy(product: ProductModel, now: datetime) -> ValidityPolicy:
    """Pick the product's validity policy, rejecting unusable ones."""
    if product.validity_type == VALIDITY_DATE:
        if product.expiry_date is None:
            raise InvalidProductConfigurationError(
                "expiry_date", "Fixed-date product has no expiry_date"
            )
        expires_at = product.expiry_date
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= now:
            raise InvalidProductConfigurationError(
                "expiry_date",
                f"Fixed expiry_date {expires_at.isoformat()} is already in the past",
            )
        return FixedExpiry(expires_at)

    if product.validity_type not in (None, "", VALIDITY_DAYS):
        raise InvalidProductConfigurationError(
            "validity_type", f"Unknown validity_type: {product.validity_type!r}"
        )

    # "days", or unset with validity_days present
    if not _is_positive_int(product.validity_days):
        raise InvalidProductConfigurationError(
            "validity_days",
            f"validity_days must be a positive integer, got {product.validity_days!r}",
        )
    return RelativeDuration(timedelta(days=product.validity_days))


def validate_product(product: ProductModel, now: Optional[datetime] = None) -> ValidatedProduct:
    """Validate a catalog row. Raises InvalidProductConfigurationError naming the bad field."""
    now = now or datetime.now(timezone.utc)
    category = parse_category(product.category)

    if category in BUDGETED_CATEGORIES and not _is_positive_int(product.usage_budget):
        raise InvalidProductConfigurationError(
            "usage_budget",
            f"{category.value} product requires a positive usage_budget, got {product.usage_budget!r}",
        )

    policy = resolve_validity_policy(product, now)

    if not product.is_active:
        logger.warning(
            "Provisioning inactive product", extra={"product_id": product.id}
        )

    return ValidatedProduct(
        id=product.id,
        name=product.name,
        tenant_id=product.tenant_id,
        category=category,
        price=product.price or 0,
        usage_budget=product.usage_budget,
        policy=policy,
        is_active=product.is_active,
    )
