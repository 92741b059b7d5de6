import json
import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from conexx_hub.core.config import settings
from conexx_hub.core.errors import (
    AuthenticationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from conexx_hub.core.money import ZERO_MONEY
from conexx_hub.core.security import verify_password
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.user import User
from conexx_hub.models.weekly_fee import WeeklyFee
from conexx_hub.services.audit_service import log_audit_event
from conexx_hub.services.customer_service import billing_user_for_tenant, get_or_create_customer
from conexx_hub.services.payment_provider import ChargeRequest, PaymentProvider

logger = logging.getLogger("conexx_hub.billing")

ALLOWED_FEE_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"created", "paid", "canceled"},
    "created": {"paid", "overdue", "canceled"},
    "overdue": {"paid", "canceled"},
    "paid": set(),
    "canceled": set(),
}
FEE_STATUSES = set(ALLOWED_FEE_TRANSITIONS)
CHARGE_METHODS = {"PIX", "BOLETO", "CREDIT_CARD"}


def _today() -> date:
    return datetime.now(timezone.utc).date()


def can_transition(current_status: str, next_status: str) -> bool:
    return next_status in ALLOWED_FEE_TRANSITIONS.get(current_status, set())


def ensure_fee_transition(current_status: str, next_status: str) -> None:
    if not can_transition(current_status, next_status):
        raise InvalidTransitionError(
            f"Cannot transition weekly fee from '{current_status}' to '{next_status}'"
        )


def normalize_charge_method(method: str | None) -> str:
    normalized = (method or "").strip().upper()
    if normalized not in CHARGE_METHODS:
        allowed = ", ".join(sorted(CHARGE_METHODS))
        raise ValidationError(f"Invalid payment method. Allowed: {allowed}")
    return normalized


def fee_or_404(db: Session, *, fee_id: str, tenant_id: str | None = None) -> WeeklyFee:
    stmt = select(WeeklyFee).where(WeeklyFee.id == fee_id)
    if tenant_id:
        stmt = stmt.where(WeeklyFee.tenant_id == tenant_id)
    fee = db.execute(stmt).scalar_one_or_none()
    if not fee:
        raise NotFoundError("Weekly fee not found")
    return fee


def _charge_description(fee: WeeklyFee) -> str:
    last_day = fee.week_end - timedelta(days=1)
    return (
        f"Taxa semanal Conexx Hub ({fee.week_start.isoformat()} a {last_day.isoformat()}) "
        f"- Faturamento: R$ {fee.revenue_week:.2f}"
    )


def fee_external_reference(fee: WeeklyFee) -> str:
    return json.dumps(
        {
            "tenantId": fee.tenant_id,
            "type": "weekly_fee",
            "weekStart": fee.week_start.isoformat(),
        },
        separators=(",", ":"),
    )


def request_charge(
    db: Session,
    provider: PaymentProvider,
    *,
    fee: WeeklyFee,
    method: str,
    actor: User,
) -> str | None:
    """Creates the provider charge for a pending fee and returns its payment URL."""
    billing_type = normalize_charge_method(method)
    ensure_fee_transition(fee.status, "created")
    if fee.amount_due is None or fee.amount_due <= ZERO_MONEY:
        raise ValidationError("Weekly fee has no amount due")

    tenant = db.execute(select(Tenant).where(Tenant.id == fee.tenant_id)).scalar_one_or_none()
    if not tenant:
        raise NotFoundError("Tenant not found")
    billing_user = billing_user_for_tenant(db, tenant_id=tenant.id)
    customer_id = get_or_create_customer(db, provider, user=billing_user, tenant=tenant)

    result = provider.create_charge(
        ChargeRequest(
            customer_id=customer_id,
            billing_type=billing_type,
            value=fee.amount_due,
            due_date=_today() + timedelta(days=settings.weekly_fee_due_days),
            description=_charge_description(fee),
            external_reference=fee_external_reference(fee),
        )
    )

    fee.status = "created"
    fee.asaas_payment_id = result.payment_id
    fee.asaas_invoice_url = result.invoice_url
    fee.due_date = result.due_date
    fee.billing_type = billing_type

    log_audit_event(
        db,
        tenant_id=fee.tenant_id,
        actor_user_id=actor.id,
        action="weekly_fee.charge.create",
        target_type="weekly_fee",
        target_id=fee.id,
        metadata_json={
            "billing_type": billing_type,
            "amount_due": float(fee.amount_due),
            "payment_provider": result.provider,
            "asaas_payment_id": result.payment_id,
        },
    )
    logger.info(
        json.dumps(
            {
                "event": "weekly_fee_charge_created",
                "fee_id": fee.id,
                "tenant_id": fee.tenant_id,
                "asaas_payment_id": result.payment_id,
                "billing_type": billing_type,
            }
        )
    )
    return result.invoice_url


def mark_paid_override(
    db: Session,
    *,
    fee: WeeklyFee,
    actor: User,
    admin_password: str | None,
) -> WeeklyFee:
    if not admin_password or not admin_password.strip():
        raise ValidationError("admin_password is required to mark a fee as paid")
    if not verify_password(admin_password, actor.hashed_password):
        raise AuthenticationError("Invalid admin password")
    ensure_fee_transition(fee.status, "paid")

    previous_status = fee.status
    fee.status = "paid"
    fee.payment_date = _today()

    log_audit_event(
        db,
        tenant_id=fee.tenant_id,
        actor_user_id=actor.id,
        action="weekly_fee.mark_paid.manual",
        target_type="weekly_fee",
        target_id=fee.id,
        metadata_json={
            "previous_status": previous_status,
            "amount_due": float(fee.amount_due),
        },
    )
    return fee


def cancel_fee(
    db: Session,
    provider: PaymentProvider,
    *,
    fee: WeeklyFee,
    actor: User,
) -> WeeklyFee:
    ensure_fee_transition(fee.status, "canceled")
    if fee.asaas_payment_id:
        provider.delete_charge(fee.asaas_payment_id)

    previous_status = fee.status
    fee.status = "canceled"

    log_audit_event(
        db,
        tenant_id=fee.tenant_id,
        actor_user_id=actor.id,
        action="weekly_fee.cancel",
        target_type="weekly_fee",
        target_id=fee.id,
        metadata_json={
            "previous_status": previous_status,
            "asaas_payment_id": fee.asaas_payment_id,
        },
    )
    return fee


def apply_provider_status(
    fee: WeeklyFee,
    next_status: str,
    *,
    payment_date: date | None = None,
) -> bool:
    """Moves a fee as reported by the payment provider. Returns True when it changed."""
    if fee.status == next_status:
        return False
    if not can_transition(fee.status, next_status):
        logger.warning(
            json.dumps(
                {
                    "event": "weekly_fee_transition_ignored",
                    "fee_id": fee.id,
                    "current_status": fee.status,
                    "requested_status": next_status,
                }
            )
        )
        return False

    fee.status = next_status
    if next_status == "paid":
        fee.payment_date = payment_date or _today()
    return True
