#!/usr/bin/env python3
"""Seed a tenant and its passes from a JSON file.

Usage:
    python scripts/seed_catalog.py catalog.json

catalog.json:
    {
      "tenant": {"name": "Dance City", "slug": "dancecity"},
      "passes": [
        {"name": "Drop-in", "category": "single", "price": 25000,
         "validity_type": "days", "validity_days": 30},
        {"name": "10-class clip card", "category": "multi", "price": 180000,
         "usage_budget": 10, "validity_days": 90},
        {"name": "Summer intensive", "category": "unlimited", "price": 99000,
         "validity_type": "date", "expiry_date": "2026-08-31T23:59:59+00:00"}
      ]
    }
"""

import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from entitlement_engine.catalog.service import ProductResolver
from entitlement_engine.catalog.validation import validate_product
from entitlement_engine.common.config import get_settings
from entitlement_engine.common.database import DatabaseManager
from entitlement_engine.common.exceptions import InvalidProductConfigurationError
from entitlement_engine.tenants.service import TenantService


def _parse_expiry(value):
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def seed_catalog(path: Path) -> None:
    data = json.loads(path.read_text())

    db = DatabaseManager(get_settings())
    await db.init()
    await db.create_all()

    tenants = TenantService()
    products = ProductResolver()

    async with db.get_session() as session:
        tenant_data = data["tenant"]
        tenant = await tenants.get_by_slug(session, tenant_data["slug"])
        if tenant is None:
            tenant = await tenants.create_tenant(session, name=tenant_data["name"], slug=tenant_data["slug"])
            print(f"  [created] tenant {tenant.slug} ({tenant.id})")
        else:
            print(f"  [skip] tenant {tenant.slug} already exists")

        existing = {p.name for p in await products.list_products(session, tenant_id=tenant.id)}
        for seed in data.get("passes", []):
            if seed["name"] in existing:
                print(f"  [skip] {seed['name']} already exists")
                continue

            product = await products.create_product(
                session,
                name=seed["name"],
                category=seed["category"],
                tenant_id=tenant.id,
                price=seed.get("price", 0),
                usage_budget=seed.get("usage_budget"),
                validity_type=seed.get("validity_type"),
                validity_days=seed.get("validity_days"),
                expiry_date=_parse_expiry(seed.get("expiry_date")),
                is_active=seed.get("is_active", True),
                description=seed.get("description", ""),
            )
            try:
                validate_product(product)
            except InvalidProductConfigurationError as e:
                print(f"  [warn] {product.name}: {e.message} (purchases will be rejected)")
            print(f"  [created] {product.name} ({product.id})")

    await db.close()
    print("\nDone.")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)
    asyncio.run(seed_catalog(Path(sys.argv[1])))
