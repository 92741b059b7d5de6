from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from conexx_hub.core.id_utils import generate_id
from conexx_hub.db.base import Base


class WeeklyFee(Base):
    __tablename__ = "weekly_fees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    tenant_id: Mapped[str] = mapped_column(String(36), ForeignKey("tenants.id"), index=True)
    # Half-open window: week_end is the first day after the week.
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    week_end: Mapped[date] = mapped_column(Date, nullable=False)
    revenue_week: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    percent_applied: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    amount_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", server_default="pending")
    asaas_payment_id: Mapped[Optional[str]] = mapped_column(String(60), nullable=True, unique=True, index=True)
    asaas_invoice_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    billing_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "week_start", name="uq_weekly_fees_tenant_week_start"),
        Index("ix_weekly_fees_tenant_status", "tenant_id", "status"),
    )
