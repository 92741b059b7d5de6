from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from conexx_hub.core.id_utils import generate_id
from conexx_hub.db.base import Base

# Storefront statuses counted as revenue. Compared lower-cased.
APPROVED_ORDER_STATUSES = {"aprovado", "approved", "paid", "completo", "success"}


class Order(Base):
    """Storefront order mirrored from the tenant's shop, keyed by its external id."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    tenant_id: Mapped[str] = mapped_column(String(36), ForeignKey("tenants.id"), index=True)
    external_id: Mapped[str] = mapped_column(String(80), nullable=False)
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    ordered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_orders_tenant_external_id"),
        Index("ix_orders_tenant_ordered_at", "tenant_id", "ordered_at"),
    )
