"""Tenant lookup service."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_engine.tenants.models import TenantModel


class TenantService:
    """Tenant operations needed by provisioning and catalog seeding."""

    async def create_tenant(
        self, session: AsyncSession, name: str, slug: str,
    ) -> TenantModel:
        tenant = TenantModel(name=name, slug=slug)
        session.add(tenant)
        await session.flush()
        return tenant

    async def get_by_id(
        self, session: AsyncSession, tenant_id: str
    ) -> TenantModel | None:
        return await session.get(TenantModel, tenant_id)

    async def get_by_slug(
        self, session: AsyncSession, slug: str
    ) -> TenantModel | None:
        result = await session.execute(
            select(TenantModel).where(TenantModel.slug == slug)
        )
        return result.scalar_one_or_none()
