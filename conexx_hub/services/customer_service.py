from sqlalchemy import case, select
from sqlalchemy.orm import Session

from conexx_hub.core.errors import NotFoundError
from conexx_hub.models.billing import AsaasCustomer
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.user import ROLE_CLIENT_ADMIN, User
from conexx_hub.services.payment_provider import CustomerData, PaymentProvider


def _billing_role_rank():
    return case((User.role == ROLE_CLIENT_ADMIN, 0), else_=1)


def billing_user_for_tenant(db: Session, *, tenant_id: str) -> User:
    user = db.execute(
        select(User)
        .where(User.tenant_id == tenant_id, User.is_active.is_(True))
        .order_by(_billing_role_rank(), User.created_at.asc(), User.id.asc())
        .limit(1)
    ).scalar_one_or_none()
    if not user:
        raise NotFoundError("No active user found for tenant billing")
    return user


def get_or_create_customer(
    db: Session,
    provider: PaymentProvider,
    *,
    user: User,
    tenant: Tenant | None = None,
) -> str:
    """Returns the provider customer id for the user, creating the mapping on first use."""
    mapping = db.execute(
        select(AsaasCustomer).where(AsaasCustomer.user_id == user.id)
    ).scalar_one_or_none()
    if mapping:
        return mapping.asaas_customer_id

    customer_id = provider.find_customer_by_email(user.email)
    if not customer_id:
        customer_id = provider.create_customer(
            CustomerData(
                name=user.name or (tenant.owner_name if tenant else None) or user.email,
                email=user.email,
                document=tenant.document if tenant else None,
                external_reference=user.id,
            )
        )

    db.add(AsaasCustomer(user_id=user.id, asaas_customer_id=customer_id))
    db.flush()
    return customer_id
