from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from conexx_hub.core.api_docs import error_responses
from conexx_hub.core.deps import get_db
from conexx_hub.core.security_current import get_current_user
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.user import User
from conexx_hub.schemas.billing import (
    CustomerOut,
    PaymentOut,
    PlanOut,
    SubscriptionCreateIn,
    SubscriptionCreateOut,
    SubscriptionOut,
    SubscriptionStatusOut,
)
from conexx_hub.services.customer_service import get_or_create_customer
from conexx_hub.services.payment_provider import PaymentProvider, get_default_payment_provider
from conexx_hub.services.subscription_service import (
    cancel_subscription,
    create_subscription,
    subscription_status,
)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.post(
    "/customer",
    response_model=CustomerOut,
    summary="Get or create the Asaas customer for the current user",
    responses=error_responses(401, 500, 502),
)
def ensure_customer(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_default_payment_provider),
):
    tenant = None
    if user.tenant_id:
        tenant = db.execute(select(Tenant).where(Tenant.id == user.tenant_id)).scalar_one_or_none()
    customer_id = get_or_create_customer(db, provider, user=user, tenant=tenant)
    db.commit()
    return CustomerOut(asaas_customer_id=customer_id)


@router.post(
    "/subscriptions",
    response_model=SubscriptionCreateOut,
    summary="Subscribe the current user to a plan",
    responses=error_responses(401, 404, 422, 500, 502),
)
def subscribe(
    payload: SubscriptionCreateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_default_payment_provider),
):
    result = create_subscription(
        db,
        provider,
        user=user,
        plan_id=payload.plan_id,
        billing_cycle=payload.billing_cycle,
    )
    db.commit()
    db.refresh(result.subscription)
    return SubscriptionCreateOut(
        subscription=SubscriptionOut.model_validate(result.subscription),
        payment_url=result.payment_url,
        reused=result.reused,
    )


@router.post(
    "/subscriptions/{subscription_id}/cancel",
    response_model=SubscriptionOut,
    summary="Cancel a subscription",
    responses=error_responses(401, 404, 500, 502),
)
def unsubscribe(
    subscription_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_default_payment_provider),
):
    subscription = cancel_subscription(db, provider, user=user, subscription_id=subscription_id)
    db.commit()
    db.refresh(subscription)
    return SubscriptionOut.model_validate(subscription)


@router.get(
    "/subscription",
    response_model=SubscriptionStatusOut,
    summary="Current subscription with plan and recent payments",
    responses=error_responses(401, 500),
)
def get_subscription_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    status = subscription_status(db, user=user)
    return SubscriptionStatusOut(
        subscription=SubscriptionOut.model_validate(status.subscription) if status.subscription else None,
        plan=PlanOut.model_validate(status.plan) if status.plan else None,
        payments=[PaymentOut.model_validate(payment) for payment in status.payments],
    )
