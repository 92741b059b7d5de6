import json
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select

from conexx_hub.core.config import settings
from conexx_hub.core.errors import ProviderError
from conexx_hub.core.money import percent_of
from conexx_hub.models.audit_log import AuditLog
from conexx_hub.models.billing import AsaasCustomer
from conexx_hub.models.tenant import Tenant
from conexx_hub.models.user import ROLE_CLIENT_USER
from conexx_hub.models.weekly_fee import WeeklyFee
from conexx_hub.services.fee_lifecycle import apply_provider_status, can_transition
from conexx_hub.services.weekly_fee_calculator import iter_week_starts, week_start_for

WEEK_OF_JAN_1 = {"start_date": "2024-01-01", "end_date": "2024-01-08"}


def _utc(year, month, day, hour=12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _fee(session_local, fee_id: str) -> WeeklyFee:
    db = session_local()
    try:
        return db.execute(select(WeeklyFee).where(WeeklyFee.id == fee_id)).scalar_one()
    finally:
        db.close()


def _seed_tenant_with_revenue(seed, *, name="Loja Azul", email="maria@lojaazul.com.br"):
    tenant_id = seed.tenant(name=name, percentage="10.00")
    seed.user(email=email, tenant_id=tenant_id)
    seed.order(tenant_id=tenant_id, value="3000.00", ordered_at=_utc(2024, 1, 2))
    seed.order(tenant_id=tenant_id, value="2000.00", ordered_at=_utc(2024, 1, 7, 23), status="Approved")
    # Not revenue: rejected status, and an order from the following week.
    seed.order(tenant_id=tenant_id, value="999.00", ordered_at=_utc(2024, 1, 3), status="cancelado")
    seed.order(tenant_id=tenant_id, value="750.00", ordered_at=_utc(2024, 1, 8, 0))
    return tenant_id


def test_week_helpers_use_monday_and_half_open_range():
    assert week_start_for(date(2024, 1, 3)) == date(2024, 1, 1)
    assert week_start_for(date(2024, 1, 7)) == date(2024, 1, 1)
    assert week_start_for(date(2024, 1, 8)) == date(2024, 1, 8)

    assert list(iter_week_starts(date(2024, 1, 1), date(2024, 1, 8))) == [date(2024, 1, 1)]
    assert list(iter_week_starts(date(2024, 1, 3), date(2024, 1, 16))) == [
        date(2024, 1, 1),
        date(2024, 1, 8),
        date(2024, 1, 15),
    ]


def test_fee_transition_table_only_moves_forward():
    assert can_transition("pending", "created")
    assert can_transition("created", "overdue")
    assert can_transition("overdue", "paid")
    for terminal in ("paid", "canceled"):
        for target in ("pending", "created", "overdue", "paid", "canceled"):
            assert not can_transition(terminal, target)
    assert not can_transition("created", "pending")
    assert not can_transition("overdue", "created")


def test_provider_status_ignores_forbidden_transition():
    fee = WeeklyFee(id="fee-1", status="paid")
    assert apply_provider_status(fee, "overdue") is False
    assert fee.status == "paid"

    fee = WeeklyFee(id="fee-2", status="created")
    assert apply_provider_status(fee, "created") is False
    assert apply_provider_status(fee, "paid", payment_date=date(2024, 1, 10)) is True
    assert fee.status == "paid"
    assert fee.payment_date == date(2024, 1, 10)


def test_calculate_creates_pending_fee_from_approved_revenue(test_context, seed, auth_headers):
    client, session_local = test_context
    seed.admin()
    tenant_id = _seed_tenant_with_revenue(seed)
    headers = auth_headers("admin@conexxhub.com.br")

    res = client.post("/weekly-fees/calculate", json=WEEK_OF_JAN_1, headers=headers)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["created"] == 1
    assert body["updated"] == 0
    assert len(body["fees"]) == 1

    fee = body["fees"][0]
    assert fee["tenant_id"] == tenant_id
    assert fee["week_start"] == "2024-01-01"
    assert fee["week_end"] == "2024-01-08"
    assert fee["status"] == "pending"
    assert _money(fee["revenue_week"]) == Decimal("5000.00")
    assert _money(fee["percent_applied"]) == Decimal("10.00")
    assert _money(fee["amount_due"]) == Decimal("500.00")


def test_fee_amount_rounds_half_cent_up():
    assert percent_of(Decimal("0.05"), Decimal("10.00")) == Decimal("0.01")
    assert percent_of(Decimal("2.25"), Decimal("2.00")) == Decimal("0.05")
    assert percent_of(Decimal("0.04"), Decimal("10.00")) == Decimal("0.00")


def test_calculate_rounds_half_cent_fee_up(test_context, seed, auth_headers):
    client, _ = test_context
    seed.admin()
    tenant_id = seed.tenant(name="Loja Centavo", percentage="10.00")
    seed.order(tenant_id=tenant_id, value="0.05", ordered_at=_utc(2024, 1, 3))

    res = client.post(
        "/weekly-fees/calculate",
        json={**WEEK_OF_JAN_1, "tenant_id": tenant_id},
        headers=auth_headers("admin@conexxhub.com.br"),
    )
    assert res.status_code == 200, res.text
    assert res.json()["created"] == 1
    fee = res.json()["fees"][0]
    assert _money(fee["revenue_week"]) == Decimal("0.05")
    assert _money(fee["amount_due"]) == Decimal("0.01")


def test_calculate_refreshes_cached_gross_revenue(test_context, seed, auth_headers):
    client, session_local = test_context
    seed.admin()
    tenant_id = _seed_tenant_with_revenue(seed)
    headers = auth_headers("admin@conexxhub.com.br")

    res = client.post("/weekly-fees/calculate", json=WEEK_OF_JAN_1, headers=headers)
    assert res.status_code == 200, res.text

    db = session_local()
    try:
        tenant = db.execute(select(Tenant).where(Tenant.id == tenant_id)).scalar_one()
        assert _money(tenant.cached_gross_revenue) == Decimal("5750.00")
    finally:
        db.close()


def test_preview_lists_actions_without_writing(test_context, seed, auth_headers):
    client, session_local = test_context
    seed.admin()
    tenant_id = _seed_tenant_with_revenue(seed)
    seed.tenant(name="Loja Sem Taxa", percentage="0")
    seed.tenant(name="Loja Inativa", percentage="5.00", active=False)
    headers = auth_headers("admin@conexxhub.com.br")

    res = client.post(
        "/weekly-fees/preview",
        json={"start_date": "2024-01-03", "end_date": "2024-01-15"},
        headers=headers,
    )
    assert res.status_code == 200, res.text
    body = res.json()
    lines = body["lines"]
    assert [line["week_start"] for line in lines] == ["2024-01-01", "2024-01-08"]
    assert all(line["tenant_id"] == tenant_id for line in lines)
    assert [line["action"] for line in lines] == ["create", "create"]
    assert _money(lines[1]["amount_due"]) == Decimal("75.00")
    assert _money(body["total_amount_due"]) == Decimal("575.00")

    db = session_local()
    try:
        assert db.execute(select(func.count(WeeklyFee.id))).scalar_one() == 0
    finally:
        db.close()


def test_preview_skips_empty_week_without_row(test_context, seed, auth_headers):
    client, _ = test_context
    seed.admin()
    seed.tenant(name="Loja Parada", percentage="8.00")
    headers = auth_headers("admin@conexxhub.com.br")

    res = client.post("/weekly-fees/preview", json=WEEK_OF_JAN_1, headers=headers)
    assert res.status_code == 200, res.text
    lines = res.json()["lines"]
    assert len(lines) == 1
    assert lines[0]["action"] == "skip"
    assert _money(lines[0]["amount_due"]) == Decimal("0.00")


def test_preview_rejects_invalid_ranges(test_context, seed, auth_headers):
    client, _ = test_context
    seed.admin()
    headers = auth_headers("admin@conexxhub.com.br")

    inverted = client.post(
        "/weekly-fees/preview",
        json={"start_date": "2024-01-08", "end_date": "2024-01-01"},
        headers=headers,
    )
    assert inverted.status_code == 422
    assert inverted.json()["error"]["code"] == "validation_error"

    too_long = client.post(
        "/weekly-fees/preview",
        json={"start_date": "2020-01-01", "end_date": "2023-01-01"},
        headers=headers,
    )
    assert too_long.status_code == 422
    assert too_long.json()["error"]["code"] == "validation_error"


def test_calculate_requires_platform_admin(test_context, seed, auth_headers):
    client, _ = test_context
    _seed_tenant_with_revenue(seed)
    headers = auth_headers("maria@lojaazul.com.br")

    res = client.post("/weekly-fees/calculate", json=WEEK_OF_JAN_1, headers=headers)
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "forbidden"


def test_recalculation_updates_pending_and_skips_charged_fees(test_context, seed, auth_headers):
    client, session_local = test_context
    seed.admin()
    tenant_id = _seed_tenant_with_revenue(seed)
    admin_headers = auth_headers("admin@conexxhub.com.br")

    first = client.post("/weekly-fees/calculate", json=WEEK_OF_JAN_1, headers=admin_headers)
    assert first.status_code == 200, first.text
    fee_id = first.json()["fees"][0]["id"]

    seed.order(tenant_id=tenant_id, value="1000.00", ordered_at=_utc(2024, 1, 4))
    second = client.post("/weekly-fees/calculate", json=WEEK_OF_JAN_1, headers=admin_headers)
    assert second.status_code == 200, second.text
    assert second.json()["created"] == 0
    assert second.json()["updated"] == 1
    assert _money(_fee(session_local, fee_id).amount_due) == Decimal("600.00")

    charge = client.post(
        f"/weekly-fees/{fee_id}/charge",
        json={"method": "PIX"},
        headers=auth_headers("maria@lojaazul.com.br"),
    )
    assert charge.status_code == 200, charge.text

    seed.order(tenant_id=tenant_id, value="4000.00", ordered_at=_utc(2024, 1, 5))
    third = client.post("/weekly-fees/calculate", json=WEEK_OF_JAN_1, headers=admin_headers)
    assert third.status_code == 200, third.text
    assert third.json()["skipped"] == 1
    assert third.json()["updated"] == 0

    fee = _fee(session_local, fee_id)
    assert fee.status == "created"
    assert _money(fee.amount_due) == Decimal("600.00")
    assert _money(fee.revenue_week) == Decimal("6000.00")


def test_recalculation_never_touches_paid_fee(test_context, seed, auth_headers):
    client, session_local = test_context
    seed.admin()
    tenant_id = _seed_tenant_with_revenue(seed)
    fee_id = seed.fee(tenant_id=tenant_id, week_start=date(2024, 1, 1), status="paid", amount="123.45")

    res = client.post(
        "/weekly-fees/calculate",
        json=WEEK_OF_JAN_1,
        headers=auth_headers("admin@conexxhub.com.br"),
    )
    assert res.status_code == 200, res.text
    assert res.json()["skipped"] == 1

    fee = _fee(session_local, fee_id)
    assert fee.status == "paid"
    assert _money(fee.amount_due) == Decimal("123.45")


def test_generate_current_week_creates_fee_for_this_week(test_context, seed, auth_headers):
    client, _ = test_context
    seed.admin()
    tenant_id = seed.tenant(name="Loja Semana", percentage="12.50")
    now = datetime.now(timezone.utc)
    monday = week_start_for(now.date())
    seed.order(
        tenant_id=tenant_id,
        value="800.00",
        ordered_at=datetime(monday.year, monday.month, monday.day, 10, tzinfo=timezone.utc),
    )

    res = client.post(
        "/weekly-fees/generate-current-week",
        headers=auth_headers("admin@conexxhub.com.br"),
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["created"] == 1
    assert body["fees"][0]["week_start"] == monday.isoformat()
    assert _money(body["fees"][0]["amount_due"]) == Decimal("100.00")


def test_list_weekly_fees_is_tenant_scoped(test_context, seed, auth_headers):
    client, _ = test_context
    seed.admin()
    tenant_a = seed.tenant(name="Loja A")
    tenant_b = seed.tenant(name="Loja B")
    seed.user(email="ana@lojaa.com.br", tenant_id=tenant_a)
    seed.fee(tenant_id=tenant_a, week_start=date(2024, 1, 1))
    seed.fee(tenant_id=tenant_a, week_start=date(2024, 1, 8), status="paid")
    seed.fee(tenant_id=tenant_b, week_start=date(2024, 1, 1))

    own = client.get("/weekly-fees", headers=auth_headers("ana@lojaa.com.br"))
    assert own.status_code == 200, own.text
    assert own.json()["total"] == 2
    assert {item["tenant_id"] for item in own.json()["items"]} == {tenant_a}

    # Client users cannot widen their scope through the query string.
    forced = client.get(
        "/weekly-fees",
        params={"tenant_id": tenant_b},
        headers=auth_headers("ana@lojaa.com.br"),
    )
    assert {item["tenant_id"] for item in forced.json()["items"]} == {tenant_a}

    admin_headers = auth_headers("admin@conexxhub.com.br")
    everything = client.get("/weekly-fees", headers=admin_headers)
    assert everything.json()["total"] == 3

    filtered = client.get("/weekly-fees", params={"tenant_id": tenant_a, "status": "paid"}, headers=admin_headers)
    assert filtered.json()["total"] == 1

    bad_status = client.get("/weekly-fees", params={"status": "refunded"}, headers=admin_headers)
    assert bad_status.status_code == 400


def test_charge_creates_provider_payment(test_context, seed, auth_headers, fake_provider):
    client, session_local = test_context
    tenant_id = seed.tenant(name="Loja Azul", percentage="10.00")
    seed.user(email="joao@lojaazul.com.br", tenant_id=tenant_id, role=ROLE_CLIENT_USER, name="Joao")
    seed.user(email="maria@lojaazul.com.br", tenant_id=tenant_id, name="Maria")
    fee_id = seed.fee(tenant_id=tenant_id, week_start=date(2024, 1, 1))

    res = client.post(
        f"/weekly-fees/{fee_id}/charge",
        json={"method": "pix"},
        headers=auth_headers("joao@lojaazul.com.br"),
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["payment_url"] == "https://sandbox.asaas.com/i/pay_000001"
    assert body["fee"]["status"] == "created"
    assert body["fee"]["asaas_payment_id"] == "pay_000001"
    assert body["fee"]["billing_type"] == "PIX"

    # The provider customer is created for the tenant's billing admin.
    assert [customer.email for customer in fake_provider.created_customers] == ["maria@lojaazul.com.br"]
    assert fake_provider.created_customers[0].document == "12.345.678/0001-90"

    request = fake_provider.charges[0]
    assert request.billing_type == "PIX"
    assert request.value == Decimal("500.00")
    assert request.due_date == datetime.now(timezone.utc).date() + timedelta(days=settings.weekly_fee_due_days)
    assert json.loads(request.external_reference) == {
        "tenantId": tenant_id,
        "type": "weekly_fee",
        "weekStart": "2024-01-01",
    }

    db = session_local()
    try:
        assert db.execute(select(func.count(AsaasCustomer.id))).scalar_one() == 1
        audit = db.execute(select(AuditLog).where(AuditLog.action == "weekly_fee.charge.create")).scalar_one()
        assert audit.target_id == fee_id
    finally:
        db.close()


def test_charge_rejects_invalid_method_and_non_pending_fee(test_context, seed, auth_headers, fake_provider):
    client, session_local = test_context
    tenant_id = seed.tenant()
    seed.user(email="maria@lojaazul.com.br", tenant_id=tenant_id)
    pending_id = seed.fee(tenant_id=tenant_id, week_start=date(2024, 1, 1))
    paid_id = seed.fee(tenant_id=tenant_id, week_start=date(2024, 1, 8), status="paid")
    empty_id = seed.fee(tenant_id=tenant_id, week_start=date(2024, 1, 15), revenue="0", amount="0")
    headers = auth_headers("maria@lojaazul.com.br")

    invalid = client.post(f"/weekly-fees/{pending_id}/charge", json={"method": "BITCOIN"}, headers=headers)
    assert invalid.status_code == 422
    assert invalid.json()["error"]["code"] == "validation_error"
    assert _fee(session_local, pending_id).status == "pending"

    paid = client.post(f"/weekly-fees/{paid_id}/charge", json={"method": "BOLETO"}, headers=headers)
    assert paid.status_code == 409
    assert paid.json()["error"]["code"] == "conflict"

    empty = client.post(f"/weekly-fees/{empty_id}/charge", json={"method": "BOLETO"}, headers=headers)
    assert empty.status_code == 422

    assert fake_provider.charges == []


def test_charge_provider_failure_leaves_fee_pending(test_context, seed, auth_headers, fake_provider):
    client, session_local = test_context
    tenant_id = seed.tenant()
    seed.user(email="maria@lojaazul.com.br", tenant_id=tenant_id)
    fee_id = seed.fee(tenant_id=tenant_id, week_start=date(2024, 1, 1))
    fake_provider.charge_error = ProviderError("Cliente inválido", provider="asaas", provider_status=400)

    res = client.post(
        f"/weekly-fees/{fee_id}/charge",
        json={"method": "PIX"},
        headers=auth_headers("maria@lojaazul.com.br"),
    )
    assert res.status_code == 502
    body = res.json()["error"]
    assert body["code"] == "provider_error"
    assert body["message"] == "Cliente inválido"
    assert body["details"] == {"provider": "asaas", "provider_status": 400}

    fee = _fee(session_local, fee_id)
    assert fee.status == "pending"
    assert fee.asaas_payment_id is None


def test_charge_other_tenant_fee_returns_404(test_context, seed, auth_headers):
    client, _ = test_context
    tenant_a = seed.tenant(name="Loja A")
    tenant_b = seed.tenant(name="Loja B")
    seed.user(email="ana@lojaa.com.br", tenant_id=tenant_a)
    fee_b = seed.fee(tenant_id=tenant_b, week_start=date(2024, 1, 1))

    res = client.post(
        f"/weekly-fees/{fee_b}/charge",
        json={"method": "PIX"},
        headers=auth_headers("ana@lojaa.com.br"),
    )
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "not_found"


def test_mark_paid_requires_admin_password(test_context, seed, auth_headers):
    client, session_local = test_context
    seed.admin()
    tenant_id = seed.tenant()
    fee_id = seed.fee(tenant_id=tenant_id, week_start=date(2024, 1, 1))
    headers = auth_headers("admin@conexxhub.com.br")

    missing = client.post(f"/weekly-fees/{fee_id}/mark-paid", json={}, headers=headers)
    assert missing.status_code == 422
    assert missing.json()["error"]["code"] == "validation_error"
    assert _fee(session_local, fee_id).status == "pending"

    blank = client.post(f"/weekly-fees/{fee_id}/mark-paid", json={"admin_password": "  "}, headers=headers)
    assert blank.status_code == 422

    wrong = client.post(f"/weekly-fees/{fee_id}/mark-paid", json={"admin_password": "wrong-pass"}, headers=headers)
    assert wrong.status_code == 401
    assert wrong.json()["error"]["code"] == "unauthorized"
    assert _fee(session_local, fee_id).status == "pending"

    ok = client.post(f"/weekly-fees/{fee_id}/mark-paid", json={"admin_password": "password123"}, headers=headers)
    assert ok.status_code == 200, ok.text
    assert ok.json()["status"] == "paid"
    assert ok.json()["payment_date"] == datetime.now(timezone.utc).date().isoformat()

    again = client.post(f"/weekly-fees/{fee_id}/mark-paid", json={"admin_password": "password123"}, headers=headers)
    assert again.status_code == 409

    db = session_local()
    try:
        audit = db.execute(select(AuditLog).where(AuditLog.action == "weekly_fee.mark_paid.manual")).scalar_one()
        assert audit.metadata_json["previous_status"] == "pending"
    finally:
        db.close()


def test_mark_paid_locks_after_repeated_wrong_passwords(test_context, seed, auth_headers):
    client, _ = test_context
    seed.admin()
    fee_id = seed.fee(tenant_id=seed.tenant(), week_start=date(2024, 1, 1))
    headers = auth_headers("admin@conexxhub.com.br")

    for _ in range(settings.auth_rate_limit_max_attempts):
        res = client.post(f"/weekly-fees/{fee_id}/mark-paid", json={"admin_password": "nope-nope"}, headers=headers)
        assert res.status_code == 401

    locked = client.post(f"/weekly-fees/{fee_id}/mark-paid", json={"admin_password": "password123"}, headers=headers)
    assert locked.status_code == 429
    assert locked.json()["error"]["code"] == "rate_limited"


def test_mark_paid_forbidden_for_client_admin(test_context, seed, auth_headers):
    client, _ = test_context
    tenant_id = seed.tenant()
    seed.user(email="maria@lojaazul.com.br", tenant_id=tenant_id)
    fee_id = seed.fee(tenant_id=tenant_id, week_start=date(2024, 1, 1))

    res = client.post(
        f"/weekly-fees/{fee_id}/mark-paid",
        json={"admin_password": "password123"},
        headers=auth_headers("maria@lojaazul.com.br"),
    )
    assert res.status_code == 403


def test_cancel_deletes_provider_charge_and_is_final(test_context, seed, auth_headers, fake_provider):
    client, session_local = test_context
    seed.admin()
    tenant_id = seed.tenant()
    fee_id = seed.fee(
        tenant_id=tenant_id,
        week_start=date(2024, 1, 1),
        status="created",
        asaas_payment_id="pay_cancel_me",
    )
    headers = auth_headers("admin@conexxhub.com.br")

    res = client.post(f"/weekly-fees/{fee_id}/cancel", headers=headers)
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "canceled"
    assert fake_provider.deleted_charges == ["pay_cancel_me"]

    again = client.post(f"/weekly-fees/{fee_id}/cancel", headers=headers)
    assert again.status_code == 409

    mark_paid = client.post(
        f"/weekly-fees/{fee_id}/mark-paid",
        json={"admin_password": "password123"},
        headers=headers,
    )
    assert mark_paid.status_code == 409
    assert _fee(session_local, fee_id).status == "canceled"


def test_cancel_pending_fee_without_charge_skips_provider(test_context, seed, auth_headers, fake_provider):
    client, _ = test_context
    seed.admin()
    fee_id = seed.fee(tenant_id=seed.tenant(), week_start=date(2024, 1, 1))

    res = client.post(f"/weekly-fees/{fee_id}/cancel", headers=auth_headers("admin@conexxhub.com.br"))
    assert res.status_code == 200, res.text
    assert fake_provider.deleted_charges == []
