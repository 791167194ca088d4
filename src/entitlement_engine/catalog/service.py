"""Catalog service — product lookup for provisioning, plus seeding helpers."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_engine.catalog.models import ProductModel
from entitlement_engine.common.exceptions import ProductNotFoundError


class ProductResolver:
    """Loads products from the catalog."""

    async def resolve(
        self, session: AsyncSession, product_id: Optional[str],
    ) -> ProductModel:
        """Return the product or raise ProductNotFoundError."""
        if not product_id:
            raise ProductNotFoundError("Transaction metadata has no product id")
        product = await session.get(ProductModel, product_id)
        if product is None:
            raise ProductNotFoundError(f"Product '{product_id}' not found")
        return product

    async def get_product(
        self, session: AsyncSession, product_id: str,
    ) -> ProductModel | None:
        return await session.get(ProductModel, product_id)

    async def list_products(
        self, session: AsyncSession, tenant_id: str | None = None,
        active_only: bool = False,
    ) -> list[ProductModel]:
        query = select(ProductModel)
        if tenant_id is not None:
            query = query.where(ProductModel.tenant_id == tenant_id)
        if active_only:
            query = query.where(ProductModel.is_active.is_(True))
        result = await session.execute(query.order_by(ProductModel.name))
        return list(result.scalars().all())

    async def create_product(
        self,
        session: AsyncSession,
        name: str,
        category: str,
        tenant_id: str | None = None,
        price: int = 0,
        usage_budget: int | None = None,
        validity_type: str | None = None,
        validity_days: int | None = None,
        expiry_date: datetime | None = None,
        is_active: bool = True,
        description: str = "",
        product_id: str | None = None,
    ) -> ProductModel:
        product = ProductModel(
            name=name,
            category=category,
            tenant_id=tenant_id,
            price=price,
            usage_budget=usage_budget,
            validity_type=validity_type,
            validity_days=validity_days,
            expiry_date=expiry_date,
            is_active=is_active,
            description=description,
        )
        if product_id:
            product.id = product_id
        session.add(product)
        await session.flush()
        return product
