"""Entitlement diagnostics API router."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select

from entitlement_engine.common.security import require_api_key
from entitlement_engine.entitlements.models import EntitlementModel
from entitlement_engine.entitlements.schemas import EntitlementResponse
from entitlement_engine.identity.models import UserModel

router = APIRouter()


def _get_db():
    from entitlement_engine.deps import get_db
    return get_db()


@router.get("/entitlements", response_model=list[EntitlementResponse])
async def list_entitlements(
    user: str | None = Query(None, description="External user reference"),
    tenant_id: str | None = Query(None),
    transaction_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    query = select(EntitlementModel)
    if user is not None:
        query = query.join(UserModel, UserModel.id == EntitlementModel.user_id).where(
            UserModel.external_ref == user
        )
    if tenant_id is not None:
        query = query.where(EntitlementModel.tenant_id == tenant_id)
    if transaction_id is not None:
        query = query.where(EntitlementModel.source_transaction_id == transaction_id)
    query = query.order_by(EntitlementModel.activated_at.desc()).offset(offset).limit(limit)

    db = _get_db()
    async with db.get_session() as session:
        result = await session.execute(query)
        return [EntitlementResponse.model_validate(e) for e in result.scalars().all()]
