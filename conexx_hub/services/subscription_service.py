import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from conexx_hub.core.errors import NotFoundError, ProviderError, ValidationError
from conexx_hub.core.money import ZERO_MONEY, to_money
from conexx_hub.models.billing import Payment, Subscription
from conexx_hub.models.plan import Plan
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.user import User
from conexx_hub.services.audit_service import log_audit_event
from conexx_hub.services.customer_service import get_or_create_customer
from conexx_hub.services.payment_provider import PaymentProvider, SubscriptionRequest

logger = logging.getLogger("conexx_hub.billing")

PROVIDER_CYCLE_BY_LOCAL_CYCLE: dict[str, str] = {
    "monthly": "MONTHLY",
    "quarterly": "QUARTERLY",
    "semiannual": "SEMIANNUALLY",
    "yearly": "YEARLY",
}
RECENT_PAYMENTS_LIMIT = 10


@dataclass(frozen=True)
class SubscriptionCreateResult:
    subscription: Subscription
    payment_url: str | None
    reused: bool = False


@dataclass(frozen=True)
class SubscriptionStatus:
    subscription: Subscription | None
    plan: Plan | None
    payments: list[Payment]


def normalize_billing_cycle(value: str | None) -> str:
    cycle = (value or "").strip().lower()
    if cycle not in PROVIDER_CYCLE_BY_LOCAL_CYCLE:
        allowed = ", ".join(sorted(PROVIDER_CYCLE_BY_LOCAL_CYCLE))
        raise ValidationError(f"Invalid billing cycle. Allowed: {allowed}")
    return cycle


def price_for_cycle(plan: Plan, cycle: str) -> Decimal:
    price = to_money(getattr(plan, f"price_{cycle}") or ZERO_MONEY)
    if price <= ZERO_MONEY:
        raise ValidationError(f"Plan '{plan.name}' has no price for the {cycle} cycle")
    return price


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _tenant_for_user(db: Session, user: User) -> Tenant | None:
    if not user.tenant_id:
        return None
    return db.execute(select(Tenant).where(Tenant.id == user.tenant_id)).scalar_one_or_none()


def create_subscription(
    db: Session,
    provider: PaymentProvider,
    *,
    user: User,
    plan_id: str,
    billing_cycle: str,
) -> SubscriptionCreateResult:
    cycle = normalize_billing_cycle(billing_cycle)
    plan = db.execute(
        select(Plan).where(Plan.id == plan_id, Plan.active.is_(True))
    ).scalar_one_or_none()
    if not plan:
        raise NotFoundError("Plan not found")

    existing = db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user.id,
            Subscription.plan_id == plan.id,
            Subscription.status == "active",
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if existing:
        return SubscriptionCreateResult(subscription=existing, payment_url=None, reused=True)

    value = price_for_cycle(plan, cycle)
    tenant = _tenant_for_user(db, user)
    customer_id = get_or_create_customer(db, provider, user=user, tenant=tenant)

    result = provider.create_subscription(
        SubscriptionRequest(
            customer_id=customer_id,
            billing_type="UNDEFINED",
            value=value,
            next_due_date=_today(),
            cycle=PROVIDER_CYCLE_BY_LOCAL_CYCLE[cycle],
            description=f"Assinatura Conexx Hub - {plan.name}",
            external_reference=user.id,
        )
    )

    subscription = Subscription(
        user_id=user.id,
        plan_id=plan.id,
        asaas_subscription_id=result.subscription_id,
        status="pending",
        value=value,
        cycle=PROVIDER_CYCLE_BY_LOCAL_CYCLE[cycle],
        next_due_date=result.next_due_date,
    )
    db.add(subscription)

    payment_url: str | None = None
    try:
        payment_url = provider.first_invoice_url(result.subscription_id)
    except ProviderError as exc:
        # The invoice is generated asynchronously; the URL also arrives later by webhook.
        logger.warning(
            json.dumps(
                {
                    "event": "subscription_invoice_lookup_failed",
                    "asaas_subscription_id": result.subscription_id,
                    "error": exc.message,
                }
            )
        )

    if tenant:
        tenant.pending_plan_id = plan.id
        tenant.pending_billing_cycle = cycle
        tenant.pending_payment_url = payment_url

    db.flush()
    log_audit_event(
        db,
        tenant_id=user.tenant_id,
        actor_user_id=user.id,
        action="subscription.create",
        target_type="subscription",
        target_id=subscription.id,
        metadata_json={
            "plan_id": plan.id,
            "billing_cycle": cycle,
            "value": float(value),
            "asaas_subscription_id": result.subscription_id,
        },
    )
    logger.info(
        json.dumps(
            {
                "event": "subscription_created",
                "subscription_id": subscription.id,
                "user_id": user.id,
                "asaas_subscription_id": result.subscription_id,
            }
        )
    )
    return SubscriptionCreateResult(subscription=subscription, payment_url=payment_url)


def cancel_subscription(
    db: Session,
    provider: PaymentProvider,
    *,
    user: User,
    subscription_id: str,
) -> Subscription:
    subscription = db.execute(
        select(Subscription).where(
            Subscription.id == subscription_id,
            Subscription.user_id == user.id,
        )
    ).scalar_one_or_none()
    if not subscription:
        raise NotFoundError("Subscription not found")

    provider.cancel_subscription(subscription.asaas_subscription_id)
    subscription.status = "canceled"

    log_audit_event(
        db,
        tenant_id=user.tenant_id,
        actor_user_id=user.id,
        action="subscription.cancel",
        target_type="subscription",
        target_id=subscription.id,
        metadata_json={"asaas_subscription_id": subscription.asaas_subscription_id},
    )
    return subscription


def subscription_status(db: Session, *, user: User) -> SubscriptionStatus:
    subscription = db.execute(
        select(Subscription)
        .where(Subscription.user_id == user.id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if not subscription:
        return SubscriptionStatus(subscription=None, plan=None, payments=[])

    plan = db.execute(select(Plan).where(Plan.id == subscription.plan_id)).scalar_one_or_none()
    payments = db.execute(
        select(Payment)
        .where(Payment.user_id == user.id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(RECENT_PAYMENTS_LIMIT)
    ).scalars().all()
    return SubscriptionStatus(subscription=subscription, plan=plan, payments=list(payments))
