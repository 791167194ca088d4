"""SQLAlchemy model for the inbound webhook delivery log."""

from sqlalchemy import Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from entitlement_engine.common.models import Base, TimestampMixin, generate_uuid


class WebhookLogModel(Base, TimestampMixin):
    __tablename__ = "webhook_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    event_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, default="", index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    detail: Mapped[dict] = mapped_column(JSON, default=dict)
    error: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    body_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    signature_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
