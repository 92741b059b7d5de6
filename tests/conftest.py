import pytest
import os
from datetime import date, datetime, timedelta
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import conexx_hub.models  # noqa: F401
from conexx_hub.core.config import settings
from conexx_hub.core.deps import get_db
from conexx_hub.core.errors import ProviderError
from conexx_hub.core.security import hash_password
from conexx_hub.db.base import Base
from conexx_hub.main import app
from conexx_hub.models.billing import Subscription
from conexx_hub.models.order import Order
from conexx_hub.models.plan import Plan
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.user import ROLE_CLIENT_ADMIN, ROLE_CONEXX_ADMIN, User
from conexx_hub.models.weekly_fee import WeeklyFee
from conexx_hub.routers.auth import login_rate_limiter
from conexx_hub.routers.weekly_fees import admin_password_limiter
from conexx_hub.services.payment_provider import (
    ChargeResult,
    SubscriptionResult,
    get_default_payment_provider,
)

TEST_PASSWORD = "password123"


class FakePaymentProvider:
    name = "fake"

    def __init__(self):
        self.customers: dict[str, str] = {}
        self.created_customers = []
        self.charges = []
        self.deleted_charges: list[str] = []
        self.subscriptions = []
        self.canceled_subscriptions: list[str] = []
        self.charge_error: ProviderError | None = None
        self.invoice_url: str | None = "https://sandbox.asaas.com/i/sub_invoice"

    def find_customer_by_email(self, email):
        return self.customers.get(email)

    def create_customer(self, customer):
        customer_id = f"cus_{len(self.created_customers) + 1:06d}"
        self.customers[customer.email] = customer_id
        self.created_customers.append(customer)
        return customer_id

    def create_charge(self, request):
        if self.charge_error is not None:
            raise self.charge_error
        self.charges.append(request)
        payment_id = f"pay_{len(self.charges):06d}"
        return ChargeResult(
            provider=self.name,
            payment_id=payment_id,
            invoice_url=f"https://sandbox.asaas.com/i/{payment_id}",
            due_date=request.due_date,
            status="PENDING",
        )

    def delete_charge(self, payment_id):
        self.deleted_charges.append(payment_id)

    def create_subscription(self, request):
        self.subscriptions.append(request)
        return SubscriptionResult(
            provider=self.name,
            subscription_id=f"sub_{len(self.subscriptions):06d}",
            next_due_date=request.next_due_date,
            status="ACTIVE",
        )

    def cancel_subscription(self, subscription_id):
        self.canceled_subscriptions.append(subscription_id)

    def first_invoice_url(self, subscription_id):
        return self.invoice_url


class Seeder:
    """Writes fixtures straight to the test database and returns their ids."""

    def __init__(self, session_local):
        self.session_local = session_local

    def _add(self, obj):
        db = self.session_local()
        try:
            db.add(obj)
            db.commit()
            return obj.id
        finally:
            db.close()

    def tenant(self, *, name="Loja Azul", percentage="10.00", active=True, document="12.345.678/0001-90", **fields):
        return self._add(
            Tenant(
                name=name,
                owner_name=f"{name} Owner",
                document=document,
                active=active,
                company_percentage=Decimal(percentage),
                **fields,
            )
        )

    def user(self, *, email, role=ROLE_CLIENT_ADMIN, tenant_id=None, name="Maria Souza", is_active=True):
        return self._add(
            User(
                email=email,
                name=name,
                role=role,
                tenant_id=tenant_id,
                hashed_password=hash_password(TEST_PASSWORD),
                is_active=is_active,
            )
        )

    def admin(self, *, email="admin@conexxhub.com.br"):
        return self.user(email=email, role=ROLE_CONEXX_ADMIN, name="Conexx Admin")

    def order(self, *, tenant_id, value, ordered_at: datetime, status="aprovado", external_id=None):
        return self._add(
            Order(
                tenant_id=tenant_id,
                external_id=external_id or f"ext-{ordered_at.isoformat()}-{value}",
                status=status,
                value=Decimal(str(value)),
                ordered_at=ordered_at,
            )
        )

    def plan(self, *, name="Plano Pro", monthly="0", quarterly="297.00", semiannual="540.00", yearly="990.00"):
        return self._add(
            Plan(
                name=name,
                price_monthly=Decimal(monthly),
                price_quarterly=Decimal(quarterly),
                price_semiannual=Decimal(semiannual),
                price_yearly=Decimal(yearly),
            )
        )

    def subscription(self, *, user_id, plan_id, asaas_subscription_id, cycle="MONTHLY", value="99.00", status="pending"):
        return self._add(
            Subscription(
                user_id=user_id,
                plan_id=plan_id,
                asaas_subscription_id=asaas_subscription_id,
                cycle=cycle,
                value=Decimal(value),
                status=status,
            )
        )

    def fee(
        self,
        *,
        tenant_id,
        week_start: date,
        status="pending",
        revenue="5000.00",
        percent="10.00",
        amount="500.00",
        asaas_payment_id=None,
    ):
        return self._add(
            WeeklyFee(
                tenant_id=tenant_id,
                week_start=week_start,
                week_end=week_start + timedelta(days=7),
                revenue_week=Decimal(revenue),
                percent_applied=Decimal(percent),
                amount_due=Decimal(amount),
                status=status,
                asaas_payment_id=asaas_payment_id,
            )
        )


@pytest.fixture()
def fake_provider():
    return FakePaymentProvider()


@pytest.fixture()
def test_context(fake_provider):
    original_secret = settings.secret_key
    settings.secret_key = "test-secret-key"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_default_payment_provider] = lambda: fake_provider

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    login_rate_limiter.clear()
    admin_password_limiter.clear()


@pytest.fixture()
def seed(test_context):
    _, session_local = test_context
    return Seeder(session_local)


@pytest.fixture()
def auth_headers(test_context):
    client, _ = test_context

    def _headers(email: str, password: str = TEST_PASSWORD) -> dict[str, str]:
        res = client.post("/auth/login", json={"email": email, "password": password})
        assert res.status_code == 200, res.text
        return {"Authorization": f"Bearer {res.json()['access_token']}"}

    return _headers
