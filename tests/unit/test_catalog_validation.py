"""Tests for product validation, expiry computation and entitlement type mapping."""

from datetime import datetime, timedelta, timezone

import pytest

from entitlement_engine.catalog.expiry import compute_expiry
from entitlement_engine.catalog.kinds import EntitlementKind, map_entitlement_type
from entitlement_engine.catalog.models import ProductModel
from entitlement_engine.catalog.validation import (
    FixedExpiry,
    ProductCategory,
    RelativeDuration,
    validate_product,
)
from entitlement_engine.common.exceptions import InvalidProductConfigurationError

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_product(**overrides) -> ProductModel:
    fields = {
        "id": "pass_1",
        "name": "Test pass",
        "tenant_id": "tenant_1",
        "category": "single",
        "price": 25000,
        "usage_budget": None,
        "validity_type": "days",
        "validity_days": 30,
        "expiry_date": None,
        "is_active": True,
    }
    fields.update(overrides)
    return ProductModel(**fields)


class TestValidateProduct:
    def test_relative_duration(self):
        product = validate_product(make_product(validity_days=90), now=NOW)
        assert product.category is ProductCategory.SINGLE
        assert product.policy == RelativeDuration(timedelta(days=90))

    def test_validity_days_without_type(self):
        product = validate_product(make_product(validity_type=None, validity_days=30), now=NOW)
        assert product.policy == RelativeDuration(timedelta(days=30))

    def test_fixed_expiry_in_future(self):
        expiry = datetime(2025, 6, 30, tzinfo=timezone.utc)
        product = validate_product(
            make_product(validity_type="date", expiry_date=expiry, validity_days=None), now=NOW,
        )
        assert product.policy == FixedExpiry(expiry)

    def test_naive_fixed_expiry_treated_as_utc(self):
        product = validate_product(
            make_product(validity_type="date", expiry_date=datetime(2025, 6, 30)), now=NOW,
        )
        assert product.policy.expires_at == datetime(2025, 6, 30, tzinfo=timezone.utc)

    def test_fixed_expiry_in_past_rejected(self):
        with pytest.raises(InvalidProductConfigurationError) as exc_info:
            validate_product(
                make_product(
                    validity_type="date",
                    expiry_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
                ),
                now=NOW,
            )
        assert exc_info.value.field == "expiry_date"
        assert exc_info.value.code == "INVALID_PRODUCT_CONFIGURATION"

    def test_fixed_expiry_equal_to_now_rejected(self):
        with pytest.raises(InvalidProductConfigurationError):
            validate_product(make_product(validity_type="date", expiry_date=NOW), now=NOW)

    def test_date_type_without_expiry_date(self):
        with pytest.raises(InvalidProductConfigurationError) as exc_info:
            validate_product(make_product(validity_type="date", expiry_date=None), now=NOW)
        assert exc_info.value.field == "expiry_date"

    def test_neither_form_rejected(self):
        with pytest.raises(InvalidProductConfigurationError) as exc_info:
            validate_product(make_product(validity_type=None, validity_days=None), now=NOW)
        assert exc_info.value.field == "validity_days"

    @pytest.mark.parametrize("days", [0, -5])
    def test_non_positive_days_rejected(self, days):
        with pytest.raises(InvalidProductConfigurationError) as exc_info:
            validate_product(make_product(validity_days=days), now=NOW)
        assert exc_info.value.field == "validity_days"

    def test_unknown_validity_type(self):
        with pytest.raises(InvalidProductConfigurationError) as exc_info:
            validate_product(make_product(validity_type="weeks"), now=NOW)
        assert exc_info.value.field == "validity_type"

    def test_unknown_category(self):
        with pytest.raises(InvalidProductConfigurationError) as exc_info:
            validate_product(make_product(category="lifetime"), now=NOW)
        assert exc_info.value.field == "category"

    @pytest.mark.parametrize("category", ["multi", "multi-pass"])
    @pytest.mark.parametrize("budget", [None, 0, -1])
    def test_budgeted_category_requires_positive_budget(self, category, budget):
        with pytest.raises(InvalidProductConfigurationError) as exc_info:
            validate_product(make_product(category=category, usage_budget=budget), now=NOW)
        assert exc_info.value.field == "usage_budget"

    def test_budget_checked_before_validity(self):
        with pytest.raises(InvalidProductConfigurationError) as exc_info:
            validate_product(
                make_product(category="multi-pass", usage_budget=None, validity_days=None),
                now=NOW,
            )
        assert exc_info.value.field == "usage_budget"

    def test_inactive_product_still_valid(self):
        product = validate_product(make_product(is_active=False), now=NOW)
        assert product.is_active is False


class TestComputeExpiry:
    def test_relative_duration_from_activation(self):
        activated = datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert compute_expiry(RelativeDuration(timedelta(days=90)), activated) == datetime(
            2025, 4, 1, tzinfo=timezone.utc
        )

    def test_fixed_expiry_verbatim(self):
        fixed = datetime(2025, 6, 30, 22, 0, tzinfo=timezone.utc)
        activated = datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert compute_expiry(FixedExpiry(fixed), activated) == fixed

    def test_unknown_policy(self):
        with pytest.raises(TypeError):
            compute_expiry(timedelta(days=1), NOW)


class TestMapEntitlementType:
    @pytest.mark.parametrize("category,budget,kind,uses", [
        ("single", None, EntitlementKind.SINGLE, 1),
        ("multi-pass", 5, EntitlementKind.MULTI_PASS, 5),
        ("multi", 10, EntitlementKind.CLIP_CARD, 10),
        ("unlimited", None, EntitlementKind.MONTHLY, None),
    ])
    def test_mapping_table(self, category, budget, kind, uses):
        product = validate_product(make_product(category=category, usage_budget=budget), now=NOW)
        assert map_entitlement_type(product) == (kind, uses)

    def test_single_ignores_budget(self):
        product = validate_product(make_product(category="single", usage_budget=8), now=NOW)
        assert map_entitlement_type(product) == (EntitlementKind.SINGLE, 1)
