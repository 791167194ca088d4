"""SQLAlchemy model for catalog products (passes).

The catalog is owned by the admin tooling and only read here. Columns are
stored as entered and checked at purchase time by ``catalog.validation``.
"""

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from entitlement_engine.common.models import Base, TimestampMixin, UTCDateTime, generate_uuid


class ProductModel(Base, TimestampMixin):
    __tablename__ = "passes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    tenant_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("tenants.id"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minor units
    usage_budget: Mapped[int | None] = mapped_column(Integer, nullable=True)
    validity_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    validity_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
