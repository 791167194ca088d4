"""Webhook log service — records every inbound Stripe delivery."""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_engine.common.database import DatabaseManager
from entitlement_engine.webhooks.models import WebhookLogModel

logger = logging.getLogger(__name__)

STATUS_UNAUTHENTICATED = "unauthenticated"


class WebhookLogService:
    """Delivery log CRUD. Recording never raises."""

    async def record(
        self,
        db: DatabaseManager,
        status: str,
        event_id: Optional[str] = None,
        event_type: str = "",
        transaction_id: Optional[str] = None,
        detail: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        processing_time_ms: int = 0,
        body_length: int = 0,
        signature_length: int = 0,
    ) -> None:
        try:
            async with db.get_session() as session:
                session.add(WebhookLogModel(
                    event_id=event_id,
                    event_type=event_type,
                    status=status,
                    transaction_id=transaction_id,
                    detail=detail or {},
                    error=error[:1024] if error else None,
                    processing_time_ms=processing_time_ms,
                    body_length=body_length,
                    signature_length=signature_length,
                ))
        except Exception:
            logger.exception(
                "Failed to record webhook log",
                extra={"event_id": event_id, "status": status},
            )

    async def list_logs(
        self,
        session: AsyncSession,
        status: str | None = None,
        transaction_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WebhookLogModel]:
        query = select(WebhookLogModel)
        if status is not None:
            query = query.where(WebhookLogModel.status == status)
        if transaction_id is not None:
            query = query.where(WebhookLogModel.transaction_id == transaction_id)
        query = query.order_by(WebhookLogModel.created_at.desc()).offset(offset).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())
