"""Translates Asaas payment and subscription callbacks into local state.

Payment callbacks for weekly-fee charges drive the fee lifecycle. Every other
payment callback is upserted into ``payments`` by provider payment id.
Subscription callbacks update the subscription row and cascade onto the owning
tenant, resolving any pending plan reservation.

Lookup failures raise ``NotFoundError``; the webhook ledger rolls back the
whole event and records the failure.
"""

import json
import logging
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from conexx_hub.core.errors import NotFoundError, ValidationError
from conexx_hub.core.money import ZERO_MONEY, to_money
from conexx_hub.models.billing import Payment, Subscription
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.user import User
from conexx_hub.models.weekly_fee import WeeklyFee
from conexx_hub.services.fee_lifecycle import apply_provider_status

logger = logging.getLogger("conexx_hub.billing")

PAYMENT_STATUS_MAP: dict[str, str] = {
    "PAYMENT_CONFIRMED": "paid",
    "PAYMENT_RECEIVED": "paid",
    "PAYMENT_OVERDUE": "overdue",
    "PAYMENT_DELETED": "failed",
    "PAYMENT_REFUNDED": "refunded",
}
SUBSCRIPTION_STATUS_MAP: dict[str, str] = {
    "SUBSCRIPTION_CREATED": "active",
    "SUBSCRIPTION_UPDATED": "active",
    "SUBSCRIPTION_DELETED": "canceled",
}
FEE_STATUS_BY_PAYMENT_STATUS: dict[str, str] = {
    "paid": "paid",
    "overdue": "overdue",
    "failed": "canceled",
}
LOCAL_CYCLE_BY_PROVIDER_CYCLE: dict[str, str] = {
    "MONTHLY": "monthly",
    "QUARTERLY": "quarterly",
    "SEMIANNUALLY": "semiannual",
    "SEMIANNUAL": "semiannual",
    "YEARLY": "yearly",
}
DEFAULT_LOCAL_CYCLE = "quarterly"


def map_payment_status(event_type: str) -> str:
    return PAYMENT_STATUS_MAP.get(event_type, "pending")


def map_subscription_status(event_type: str) -> str:
    return SUBSCRIPTION_STATUS_MAP.get(event_type, "pending")


def tenant_subscription_status(subscription_status: str) -> str:
    if subscription_status == "active":
        return "active"
    if subscription_status == "canceled":
        return "canceled"
    return "past_due"


def _parse_date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _require_id(data: dict[str, Any], kind: str) -> str:
    object_id = str(data.get("id") or "").strip()
    if not object_id:
        raise ValidationError(f"{kind} event without id")
    return object_id


def handle_payment_event(db: Session, payment: dict[str, Any], event_type: str) -> str:
    payment_id = _require_id(payment, "Payment")
    status = map_payment_status(event_type)

    fee = db.execute(
        select(WeeklyFee).where(WeeklyFee.asaas_payment_id == payment_id)
    ).scalar_one_or_none()
    if fee is not None:
        target = FEE_STATUS_BY_PAYMENT_STATUS.get(status)
        if target:
            apply_provider_status(
                fee,
                target,
                payment_date=_parse_date(payment.get("paymentDate") or payment.get("clientPaymentDate")),
            )
        return status

    user_id = str(payment.get("externalReference") or "").strip()
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none() if user_id else None
    if not user:
        raise NotFoundError(f"User not found for payment {payment_id}")

    subscription_id: str | None = None
    provider_subscription_id = payment.get("subscription")
    if provider_subscription_id:
        subscription_id = db.execute(
            select(Subscription.id).where(Subscription.asaas_subscription_id == str(provider_subscription_id))
        ).scalar_one_or_none()

    row = db.execute(
        select(Payment).where(Payment.asaas_payment_id == payment_id)
    ).scalar_one_or_none()
    if row is None:
        row = Payment(asaas_payment_id=payment_id, user_id=user.id, value=ZERO_MONEY)
        db.add(row)

    row.user_id = user.id
    if subscription_id:
        row.subscription_id = subscription_id
    row.status = status
    if payment.get("value") is not None:
        row.value = to_money(payment["value"])
    row.due_date = _parse_date(payment.get("dueDate")) or row.due_date
    if status == "paid" and row.paid_at is None:
        row.paid_at = datetime.now(timezone.utc)
    return status


def handle_subscription_event(db: Session, data: dict[str, Any], event_type: str) -> str:
    provider_subscription_id = _require_id(data, "Subscription")
    status = map_subscription_status(event_type)

    subscription = db.execute(
        select(Subscription).where(Subscription.asaas_subscription_id == provider_subscription_id)
    ).scalar_one_or_none()
    if not subscription:
        raise NotFoundError(f"Subscription not found: {provider_subscription_id}")

    subscription.status = status
    next_due_date = _parse_date(data.get("nextDueDate"))
    if next_due_date:
        subscription.next_due_date = next_due_date

    user = db.execute(select(User).where(User.id == subscription.user_id)).scalar_one_or_none()
    if not user or not user.tenant_id:
        raise NotFoundError(f"Tenant not found for subscription {provider_subscription_id}")
    tenant = db.execute(select(Tenant).where(Tenant.id == user.tenant_id)).scalar_one_or_none()
    if not tenant:
        raise NotFoundError(f"Tenant not found for subscription {provider_subscription_id}")

    tenant.plan_id = subscription.plan_id
    tenant.billing_cycle = LOCAL_CYCLE_BY_PROVIDER_CYCLE.get(subscription.cycle, DEFAULT_LOCAL_CYCLE)
    tenant.next_billing = (
        datetime.combine(subscription.next_due_date, time.min, tzinfo=timezone.utc)
        if subscription.next_due_date
        else None
    )
    tenant.subscription_status = tenant_subscription_status(status)
    tenant.pending_plan_id = None
    tenant.pending_billing_cycle = None
    tenant.pending_payment_url = None
    return status


def reconcile_event(db: Session, event_type: str, data: dict[str, Any]) -> str | None:
    if event_type.startswith("PAYMENT_"):
        return handle_payment_event(db, data, event_type)
    if event_type.startswith("SUBSCRIPTION_"):
        return handle_subscription_event(db, data, event_type)
    logger.info(json.dumps({"event": "webhook_event_ignored", "event_type": event_type}))
    return None
