from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select

from conexx_hub.models.billing import AsaasCustomer, Payment, Subscription
from conexx_hub.models.tenant import Tenant


def _tenant(session_local, tenant_id: str) -> Tenant:
    db = session_local()
    try:
        return db.execute(select(Tenant).where(Tenant.id == tenant_id)).scalar_one()
    finally:
        db.close()


def test_billing_customer_is_created_once(test_context, seed, auth_headers, fake_provider):
    client, session_local = test_context
    tenant_id = seed.tenant(document="123.456.789-09")
    user_id = seed.user(email="maria@lojaazul.com.br", tenant_id=tenant_id)
    headers = auth_headers("maria@lojaazul.com.br")

    first = client.post("/billing/customer", headers=headers)
    assert first.status_code == 200, first.text
    customer_id = first.json()["asaas_customer_id"]
    assert customer_id == "cus_000001"

    second = client.post("/billing/customer", headers=headers)
    assert second.status_code == 200, second.text
    assert second.json()["asaas_customer_id"] == customer_id

    assert len(fake_provider.created_customers) == 1
    created = fake_provider.created_customers[0]
    assert created.external_reference == user_id
    assert created.document == "123.456.789-09"

    db = session_local()
    try:
        assert db.execute(select(func.count(AsaasCustomer.id))).scalar_one() == 1
    finally:
        db.close()


def test_billing_customer_reuses_existing_provider_customer(test_context, seed, auth_headers, fake_provider):
    client, _ = test_context
    seed.user(email="maria@lojaazul.com.br", tenant_id=seed.tenant())
    fake_provider.customers["maria@lojaazul.com.br"] = "cus_existing"

    res = client.post("/billing/customer", headers=auth_headers("maria@lojaazul.com.br"))
    assert res.status_code == 200, res.text
    assert res.json()["asaas_customer_id"] == "cus_existing"
    assert fake_provider.created_customers == []


def test_create_subscription_reserves_plan_on_tenant(test_context, seed, auth_headers, fake_provider):
    client, session_local = test_context
    plan_id = seed.plan(quarterly="297.00")
    tenant_id = seed.tenant()
    user_id = seed.user(email="maria@lojaazul.com.br", tenant_id=tenant_id)

    res = client.post(
        "/billing/subscriptions",
        json={"plan_id": plan_id, "billing_cycle": "Quarterly"},
        headers=auth_headers("maria@lojaazul.com.br"),
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["reused"] is False
    assert body["payment_url"] == "https://sandbox.asaas.com/i/sub_invoice"
    assert body["subscription"]["status"] == "pending"
    assert body["subscription"]["asaas_subscription_id"] == "sub_000001"
    assert body["subscription"]["cycle"] == "QUARTERLY"

    request = fake_provider.subscriptions[0]
    assert request.billing_type == "UNDEFINED"
    assert request.cycle == "QUARTERLY"
    assert request.value == Decimal("297.00")
    assert request.external_reference == user_id
    assert request.next_due_date == datetime.now(timezone.utc).date()

    tenant = _tenant(session_local, tenant_id)
    assert tenant.pending_plan_id == plan_id
    assert tenant.pending_billing_cycle == "quarterly"
    assert tenant.pending_payment_url == "https://sandbox.asaas.com/i/sub_invoice"


def test_create_subscription_rejects_unpriced_cycle_and_unknown_plan(test_context, seed, auth_headers, fake_provider):
    client, _ = test_context
    plan_id = seed.plan(monthly="0")
    seed.user(email="maria@lojaazul.com.br", tenant_id=seed.tenant())
    headers = auth_headers("maria@lojaazul.com.br")

    unpriced = client.post(
        "/billing/subscriptions",
        json={"plan_id": plan_id, "billing_cycle": "monthly"},
        headers=headers,
    )
    assert unpriced.status_code == 422
    assert unpriced.json()["error"]["code"] == "validation_error"

    bad_cycle = client.post(
        "/billing/subscriptions",
        json={"plan_id": plan_id, "billing_cycle": "weekly"},
        headers=headers,
    )
    assert bad_cycle.status_code == 422

    unknown = client.post(
        "/billing/subscriptions",
        json={"plan_id": "does-not-exist", "billing_cycle": "yearly"},
        headers=headers,
    )
    assert unknown.status_code == 404

    assert fake_provider.subscriptions == []


def test_active_subscription_for_same_plan_is_returned(test_context, seed, auth_headers, fake_provider):
    client, _ = test_context
    plan_id = seed.plan()
    user_id = seed.user(email="maria@lojaazul.com.br", tenant_id=seed.tenant())
    existing_id = seed.subscription(
        user_id=user_id,
        plan_id=plan_id,
        asaas_subscription_id="sub_live",
        cycle="QUARTERLY",
        status="active",
    )

    res = client.post(
        "/billing/subscriptions",
        json={"plan_id": plan_id, "billing_cycle": "quarterly"},
        headers=auth_headers("maria@lojaazul.com.br"),
    )
    assert res.status_code == 200, res.text
    assert res.json()["reused"] is True
    assert res.json()["subscription"]["id"] == existing_id
    assert fake_provider.subscriptions == []


def test_cancel_subscription(test_context, seed, auth_headers, fake_provider):
    client, session_local = test_context
    plan_id = seed.plan()
    user_id = seed.user(email="maria@lojaazul.com.br", tenant_id=seed.tenant())
    other_id = seed.user(email="ana@lojaa.com.br", tenant_id=seed.tenant(name="Loja A"))
    subscription_id = seed.subscription(user_id=user_id, plan_id=plan_id, asaas_subscription_id="sub_bye", status="active")

    forbidden = client.post(
        f"/billing/subscriptions/{subscription_id}/cancel",
        headers=auth_headers("ana@lojaa.com.br"),
    )
    assert forbidden.status_code == 404
    assert other_id

    res = client.post(
        f"/billing/subscriptions/{subscription_id}/cancel",
        headers=auth_headers("maria@lojaazul.com.br"),
    )
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "canceled"
    assert fake_provider.canceled_subscriptions == ["sub_bye"]

    db = session_local()
    try:
        row = db.execute(select(Subscription).where(Subscription.id == subscription_id)).scalar_one()
        assert row.status == "canceled"
    finally:
        db.close()


def test_subscription_status_lists_plan_and_recent_payments(test_context, seed, auth_headers):
    client, session_local = test_context
    headers_email = "maria@lojaazul.com.br"
    user_id = seed.user(email=headers_email, tenant_id=seed.tenant())

    empty = client.get("/billing/subscription", headers=auth_headers(headers_email))
    assert empty.status_code == 200, empty.text
    assert empty.json() == {"subscription": None, "plan": None, "payments": []}

    plan_id = seed.plan(name="Plano Pro")
    subscription_id = seed.subscription(user_id=user_id, plan_id=plan_id, asaas_subscription_id="sub_st")
    db = session_local()
    try:
        for index in range(12):
            db.add(
                Payment(
                    user_id=user_id,
                    subscription_id=subscription_id,
                    asaas_payment_id=f"pay_st_{index}",
                    status="paid",
                    value=Decimal("99.00"),
                )
            )
        db.commit()
    finally:
        db.close()

    res = client.get("/billing/subscription", headers=auth_headers(headers_email))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["subscription"]["id"] == subscription_id
    assert body["plan"]["name"] == "Plano Pro"
    assert len(body["payments"]) == 10
