from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from conexx_hub.core.id_utils import generate_id
from conexx_hub.db.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    document: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    company_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0"),
        server_default="0",
    )
    cached_gross_revenue: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("0"),
        server_default="0",
    )
    plan_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("plans.id"), nullable=True, index=True)
    subscription_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        server_default="active",
    )
    billing_cycle: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    next_billing: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Reservation for a requested plan change, resolved by subscription webhooks.
    pending_plan_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("plans.id"), nullable=True)
    pending_billing_cycle: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    pending_payment_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
