from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conexx_hub.core.api_docs import error_responses
from conexx_hub.core.config import settings
from conexx_hub.core.deps import get_db
from conexx_hub.core.errors import AuthenticationError
from conexx_hub.core.money import ZERO_MONEY
from conexx_hub.core.permissions import require_roles
from conexx_hub.core.rate_limit import FailedAttemptLimiter
from conexx_hub.core.security_current import get_current_user, is_platform_admin, resolve_tenant_scope
from conexx_hub.models.user import ROLE_CONEXX_ADMIN, User
from conexx_hub.models.weekly_fee import WeeklyFee
from conexx_hub.schemas.weekly_fee import (
    FeeLineOut,
    WeeklyFeeCalculateOut,
    WeeklyFeeChargeIn,
    WeeklyFeeChargeOut,
    WeeklyFeeListOut,
    WeeklyFeeMarkPaidIn,
    WeeklyFeeOut,
    WeeklyFeePreviewOut,
    WeeklyFeeRangeIn,
)
from conexx_hub.services.fee_lifecycle import (
    FEE_STATUSES,
    cancel_fee,
    fee_or_404,
    mark_paid_override,
    request_charge,
)
from conexx_hub.services.payment_provider import PaymentProvider, get_default_payment_provider
from conexx_hub.services.weekly_fee_calculator import (
    calculate_weekly_fees,
    generate_current_week_fees,
    preview_weekly_fees,
)

router = APIRouter(prefix="/weekly-fees", tags=["weekly-fees"])

admin_password_limiter = FailedAttemptLimiter(
    max_attempts=settings.auth_rate_limit_max_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
    lock_seconds=settings.auth_rate_limit_lock_seconds,
)


def _normalize_status_filter(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip().lower()
    if not cleaned:
        return None
    if cleaned not in FEE_STATUSES:
        allowed = ", ".join(sorted(FEE_STATUSES))
        raise HTTPException(status_code=400, detail=f"Invalid status. Allowed: {allowed}")
    return cleaned


def _scoped_fee_or_404(db: Session, *, fee_id: str, user: User) -> WeeklyFee:
    tenant_id = None if is_platform_admin(user) else resolve_tenant_scope(user)
    return fee_or_404(db, fee_id=fee_id, tenant_id=tenant_id)


@router.get(
    "",
    response_model=WeeklyFeeListOut,
    summary="List weekly fees",
    description="Client users see their own tenant. Platform admins may filter by tenant_id.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_weekly_fees(
    tenant_id: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=52, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    scope = resolve_tenant_scope(user, tenant_id)
    normalized_status = _normalize_status_filter(status_filter)

    count_stmt = select(func.count(WeeklyFee.id))
    stmt = select(WeeklyFee)
    if scope:
        count_stmt = count_stmt.where(WeeklyFee.tenant_id == scope)
        stmt = stmt.where(WeeklyFee.tenant_id == scope)
    if normalized_status:
        count_stmt = count_stmt.where(WeeklyFee.status == normalized_status)
        stmt = stmt.where(WeeklyFee.status == normalized_status)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        stmt.order_by(WeeklyFee.week_start.desc(), WeeklyFee.tenant_id.asc())
        .limit(limit)
        .offset(offset)
    ).scalars().all()
    return WeeklyFeeListOut(
        items=[WeeklyFeeOut.model_validate(row) for row in rows],
        total=total,
    )


@router.post(
    "/preview",
    response_model=WeeklyFeePreviewOut,
    summary="Preview weekly fees for a date range",
    responses=error_responses(401, 403, 422, 500),
)
def preview_fees(
    payload: WeeklyFeeRangeIn,
    _: User = Depends(require_roles(ROLE_CONEXX_ADMIN)),
    db: Session = Depends(get_db),
):
    lines = preview_weekly_fees(
        db,
        range_start=payload.start_date,
        range_end=payload.end_date,
        tenant_id=payload.tenant_id,
    )
    total_amount_due = sum(
        (line.amount_due for line in lines if line.action != "skip"),
        ZERO_MONEY,
    )
    return WeeklyFeePreviewOut(
        lines=[FeeLineOut.model_validate(line) for line in lines],
        total_amount_due=total_amount_due,
    )


@router.post(
    "/calculate",
    response_model=WeeklyFeeCalculateOut,
    summary="Calculate and save weekly fees for a date range",
    responses=error_responses(401, 403, 422, 500),
)
def calculate_fees(
    payload: WeeklyFeeRangeIn,
    _: User = Depends(require_roles(ROLE_CONEXX_ADMIN)),
    db: Session = Depends(get_db),
):
    result = calculate_weekly_fees(
        db,
        range_start=payload.start_date,
        range_end=payload.end_date,
        tenant_id=payload.tenant_id,
    )
    db.commit()
    return WeeklyFeeCalculateOut(
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        fees=[WeeklyFeeOut.model_validate(fee) for fee in result.fees],
    )


@router.post(
    "/generate-current-week",
    response_model=WeeklyFeeCalculateOut,
    summary="Generate fees for the current week",
    responses=error_responses(401, 403, 500),
)
def generate_current_week(
    _: User = Depends(require_roles(ROLE_CONEXX_ADMIN)),
    db: Session = Depends(get_db),
):
    result = generate_current_week_fees(db)
    db.commit()
    return WeeklyFeeCalculateOut(
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        fees=[WeeklyFeeOut.model_validate(fee) for fee in result.fees],
    )


@router.post(
    "/{fee_id}/charge",
    response_model=WeeklyFeeChargeOut,
    summary="Create the Asaas charge for a weekly fee",
    responses=error_responses(401, 404, 409, 422, 500, 502),
)
def charge_fee(
    fee_id: str,
    payload: WeeklyFeeChargeIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_default_payment_provider),
):
    fee = _scoped_fee_or_404(db, fee_id=fee_id, user=user)
    payment_url = request_charge(db, provider, fee=fee, method=payload.method, actor=user)
    db.commit()
    db.refresh(fee)
    return WeeklyFeeChargeOut(fee=WeeklyFeeOut.model_validate(fee), payment_url=payment_url)


@router.post(
    "/{fee_id}/mark-paid",
    response_model=WeeklyFeeOut,
    summary="Mark a weekly fee as paid (manual override)",
    description="Requires the acting admin to re-enter their password.",
    responses=error_responses(401, 403, 404, 409, 422, 429, 500),
)
def mark_fee_paid(
    fee_id: str,
    payload: WeeklyFeeMarkPaidIn,
    user: User = Depends(require_roles(ROLE_CONEXX_ADMIN)),
    db: Session = Depends(get_db),
):
    retry_after = admin_password_limiter.check(user.id)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    fee = fee_or_404(db, fee_id=fee_id)
    try:
        mark_paid_override(db, fee=fee, actor=user, admin_password=payload.admin_password)
    except AuthenticationError:
        admin_password_limiter.register_failure(user.id)
        raise
    admin_password_limiter.register_success(user.id)

    db.commit()
    db.refresh(fee)
    return WeeklyFeeOut.model_validate(fee)


@router.post(
    "/{fee_id}/cancel",
    response_model=WeeklyFeeOut,
    summary="Cancel a weekly fee",
    description="Deletes the provider charge when one exists. Paid and canceled fees cannot be canceled.",
    responses=error_responses(401, 403, 404, 409, 500, 502),
)
def cancel_weekly_fee(
    fee_id: str,
    user: User = Depends(require_roles(ROLE_CONEXX_ADMIN)),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_default_payment_provider),
):
    fee = fee_or_404(db, fee_id=fee_id)
    cancel_fee(db, provider, fee=fee, actor=user)
    db.commit()
    db.refresh(fee)
    return WeeklyFeeOut.model_validate(fee)
