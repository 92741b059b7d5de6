import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterator, Literal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conexx_hub.core.errors import ValidationError
from conexx_hub.core.money import ZERO_MONEY, percent_of, to_money
from conexx_hub.models.order import APPROVED_ORDER_STATUSES, Order
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.weekly_fee import WeeklyFee

logger = logging.getLogger("conexx_hub.billing")

WEEK_LENGTH = timedelta(days=7)
MAX_RANGE_WEEKS = 104

FeeLineAction = Literal["create", "update", "skip"]


@dataclass(frozen=True)
class FeeLine:
    tenant_id: str
    tenant_name: str
    week_start: date
    week_end: date
    revenue_week: Decimal
    percent_applied: Decimal
    amount_due: Decimal
    action: FeeLineAction
    existing_fee_id: str | None = None
    existing_status: str | None = None


@dataclass(frozen=True)
class FeeCommitResult:
    created: int
    updated: int
    skipped: int
    fees: list[WeeklyFee]


def week_start_for(day: date) -> date:
    return day - timedelta(days=day.weekday())


def iter_week_starts(range_start: date, range_end: date) -> Iterator[date]:
    """Mondays of every week overlapping ``[range_start, range_end)``."""
    current = week_start_for(range_start)
    while current < range_end:
        yield current
        current += WEEK_LENGTH


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def revenue_for_window(db: Session, *, tenant_id: str, window_start: date, window_end: date) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(Order.value), 0)).where(
            Order.tenant_id == tenant_id,
            func.lower(Order.status).in_(APPROVED_ORDER_STATUSES),
            Order.ordered_at >= _day_start(window_start),
            Order.ordered_at < _day_start(window_end),
        )
    ).scalar_one()
    return to_money(total or ZERO_MONEY)


def refresh_cached_gross_revenue(db: Session, tenant: Tenant) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(Order.value), 0)).where(
            Order.tenant_id == tenant.id,
            func.lower(Order.status).in_(APPROVED_ORDER_STATUSES),
        )
    ).scalar_one()
    tenant.cached_gross_revenue = to_money(total or ZERO_MONEY)
    return tenant.cached_gross_revenue


def _existing_fee(db: Session, *, tenant_id: str, week_start: date) -> WeeklyFee | None:
    return db.execute(
        select(WeeklyFee).where(
            WeeklyFee.tenant_id == tenant_id,
            WeeklyFee.week_start == week_start,
        )
    ).scalar_one_or_none()


def compute_fee_line(db: Session, *, tenant: Tenant, week_start: date) -> FeeLine:
    week_start = week_start_for(week_start)
    week_end = week_start + WEEK_LENGTH
    percent = to_money(tenant.company_percentage or ZERO_MONEY)
    revenue = revenue_for_window(db, tenant_id=tenant.id, window_start=week_start, window_end=week_end)
    amount = percent_of(revenue, percent)

    existing = _existing_fee(db, tenant_id=tenant.id, week_start=week_start)
    action: FeeLineAction
    if existing is not None:
        # Invoiced, paid or canceled fees keep the amount they were charged with.
        action = "update" if existing.status == "pending" else "skip"
    else:
        action = "create" if amount > ZERO_MONEY else "skip"

    return FeeLine(
        tenant_id=tenant.id,
        tenant_name=tenant.name,
        week_start=week_start,
        week_end=week_end,
        revenue_week=revenue,
        percent_applied=percent,
        amount_due=amount,
        action=action,
        existing_fee_id=existing.id if existing else None,
        existing_status=existing.status if existing else None,
    )


def _billable_tenants(db: Session, *, tenant_id: str | None = None) -> list[Tenant]:
    stmt = select(Tenant).where(
        Tenant.active.is_(True),
        Tenant.company_percentage > 0,
    )
    if tenant_id:
        stmt = stmt.where(Tenant.id == tenant_id)
    return list(db.execute(stmt.order_by(Tenant.name.asc())).scalars().all())


def preview_weekly_fees(
    db: Session,
    *,
    range_start: date,
    range_end: date,
    tenant_id: str | None = None,
) -> list[FeeLine]:
    if range_end <= range_start:
        raise ValidationError("end_date must be after start_date")
    week_starts = list(iter_week_starts(range_start, range_end))
    if len(week_starts) > MAX_RANGE_WEEKS:
        raise ValidationError(f"Date range cannot span more than {MAX_RANGE_WEEKS} weeks")

    lines: list[FeeLine] = []
    for tenant in _billable_tenants(db, tenant_id=tenant_id):
        for week_start in week_starts:
            lines.append(compute_fee_line(db, tenant=tenant, week_start=week_start))
    return lines


def _apply_line(db: Session, line: FeeLine) -> WeeklyFee | None:
    if line.action == "skip":
        return None

    if line.action == "update":
        fee = db.execute(select(WeeklyFee).where(WeeklyFee.id == line.existing_fee_id)).scalar_one()
        if fee.status != "pending":
            return None
    else:
        fee = WeeklyFee(
            tenant_id=line.tenant_id,
            week_start=line.week_start,
            week_end=line.week_end,
            status="pending",
        )
        db.add(fee)

    fee.revenue_week = line.revenue_week
    fee.percent_applied = line.percent_applied
    fee.amount_due = line.amount_due
    return fee


def commit_fee_lines(db: Session, lines: list[FeeLine]) -> FeeCommitResult:
    """Writes the lines in the caller's transaction. Caller commits."""
    created = updated = skipped = 0
    fees: list[WeeklyFee] = []
    for line in lines:
        fee = _apply_line(db, line)
        if fee is None:
            skipped += 1
            continue
        if line.action == "create":
            created += 1
        else:
            updated += 1
        fees.append(fee)

    for tenant_id in sorted({line.tenant_id for line in lines}):
        tenant = db.execute(select(Tenant).where(Tenant.id == tenant_id)).scalar_one()
        refresh_cached_gross_revenue(db, tenant)

    db.flush()
    logger.info(
        json.dumps(
            {
                "event": "weekly_fees_committed",
                "created": created,
                "updated": updated,
                "skipped": skipped,
            }
        )
    )
    return FeeCommitResult(created=created, updated=updated, skipped=skipped, fees=fees)


def calculate_weekly_fees(
    db: Session,
    *,
    range_start: date,
    range_end: date,
    tenant_id: str | None = None,
) -> FeeCommitResult:
    lines = preview_weekly_fees(db, range_start=range_start, range_end=range_end, tenant_id=tenant_id)
    return commit_fee_lines(db, lines)


def generate_current_week_fees(db: Session, *, today: date | None = None) -> FeeCommitResult:
    current = today or datetime.now(timezone.utc).date()
    week_start = week_start_for(current)
    return calculate_weekly_fees(db, range_start=week_start, range_end=week_start + WEEK_LENGTH)
