"""Pydantic schemas for the webhook delivery log."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class WebhookLogResponse(BaseModel):
    id: str
    event_id: Optional[str] = None
    event_type: str
    status: str
    transaction_id: Optional[str] = None
    detail: dict[str, Any] = {}
    error: Optional[str] = None
    processing_time_ms: int
    body_length: int
    signature_length: int
    created_at: datetime

    model_config = {"from_attributes": True}
