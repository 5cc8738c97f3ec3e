from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

from fastapi import status

from app.core.config import settings
from app.services.subscriptions import SubscriptionRepository
from tests.conftest import admin_headers, create_subscription, create_tenant, tenant_headers  # type: ignore

BILLING = f"{settings.api_v1_str}/billing"


def _tenant_on(db_session, plan, elapsed_days: int = 20, **kwargs):
    tenant = create_tenant(db_session)
    create_subscription(db_session, tenant, plan, datetime.utcnow() - timedelta(days=elapsed_days), **kwargs)
    return tenant


def test_list_plans_seeds_public_catalog(client) -> None:
    resp = client.get(f"{BILLING}/plans")
    assert resp.status_code == status.HTTP_200_OK, resp.text
    codes = {plan["code"] for plan in resp.json()}
    assert codes == {"tracker", "inicial", "pro", "premium", "personalizado"}


def test_seed_plans_requires_admin_token(client, admin_token) -> None:
    denied = client.post(f"{BILLING}/seed-plans")
    assert denied.status_code == status.HTTP_403_FORBIDDEN

    resp = client.post(f"{BILLING}/seed-plans", headers=admin_headers())
    assert resp.status_code == status.HTTP_201_CREATED, resp.text
    assert "trial" in {plan["code"] for plan in resp.json()}


def test_requests_without_tenant_header_are_rejected(client) -> None:
    assert client.get(f"{BILLING}/status").status_code == status.HTTP_401_UNAUTHORIZED
    assert client.get(f"{BILLING}/status", headers={"X-Tenant-ID": "abc"}).status_code == status.HTTP_400_BAD_REQUEST
    assert client.get(f"{BILLING}/status", headers={"X-Tenant-ID": str(uuid4())}).status_code == status.HTTP_404_NOT_FOUND


def test_preview_change_returns_prorated_quote(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["inicial"])

    resp = client.get(
        f"{BILLING}/preview-change",
        params={"plan_id": str(plans["pro"].id)},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_200_OK, resp.text
    quote = resp.json()
    assert quote["classification"] == "upgrade"
    assert quote["days_in_cycle"] == 30
    assert quote["days_remaining"] == 10
    assert quote["delta_net_cents"] == 266667
    assert quote["tax_cents"] == 56000
    assert quote["total_cents"] == 322667


def test_preview_unknown_plan_is_404(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["inicial"])

    resp = client.get(
        f"{BILLING}/preview-change",
        params={"plan_id": str(uuid4())},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_404_NOT_FOUND
    assert resp.json()["detail"]["error"] == "plan_not_found"


def test_change_plan_upgrade_returns_payment_required_with_checkout(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["inicial"])

    resp = client.post(
        f"{BILLING}/change-plan",
        json={"plan_id": str(plans["pro"].id), "expected_classification": "upgrade"},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_200_OK, resp.text
    body = resp.json()
    assert body["status"] == "payment_required"
    assert body["amount_due_cents"] == 322667
    assert body["currency"] == "ARS"
    assert body["checkout_reference"].startswith("manual-")
    assert body["quote"]["classification"] == "upgrade"

    invoices = client.get(f"{BILLING}/invoices", headers=tenant_headers(tenant)).json()
    assert len(invoices) == 1
    assert invoices[0]["id"] == body["invoice_id"]
    assert invoices[0]["external_id"] == body["checkout_reference"]


def test_change_plan_downgrade_is_scheduled(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["premium"], elapsed_days=5)

    resp = client.post(
        f"{BILLING}/change-plan",
        json={"plan_id": str(plans["inicial"].id)},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_200_OK, resp.text
    body = resp.json()
    assert body["status"] == "scheduled"
    assert body["plan_id"] == str(plans["inicial"].id)

    subscription = SubscriptionRepository(db_session).get_active(tenant.id)
    assert subscription.plan_id == plans["premium"].id
    assert subscription.scheduled_plan_id == plans["inicial"].id


def test_change_plan_same_plan_is_no_change(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["pro"], elapsed_days=5)

    resp = client.post(
        f"{BILLING}/change-plan",
        json={"plan_id": str(plans["pro"].id)},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_200_OK, resp.text
    assert resp.json() == {"status": "no_change"}


def test_change_plan_stale_classification_is_409(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["inicial"])

    resp = client.post(
        f"{BILLING}/change-plan",
        json={"plan_id": str(plans["pro"].id), "expected_classification": "downgrade"},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_409_CONFLICT
    detail = resp.json()["detail"]
    assert detail["error"] == "quote_stale"
    assert detail["context"] == {"expected": "downgrade", "actual": "upgrade"}


def test_change_plan_seats_out_of_range_is_422(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["premium"])

    resp = client.post(
        f"{BILLING}/change-plan",
        json={"plan_id": str(plans["personalizado"].id), "seats": 60},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert resp.json()["detail"]["error"] == "seat_count_out_of_range"


def test_change_plan_after_cycle_end_requires_renewal(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["inicial"], elapsed_days=32)

    resp = client.post(
        f"{BILLING}/change-plan",
        json={"plan_id": str(plans["pro"].id)},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_409_CONFLICT
    assert resp.json()["detail"]["error"] == "renewal_required"


def test_billing_status_endpoint(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["pro"], elapsed_days=31)

    resp = client.get(f"{BILLING}/status", headers=tenant_headers(tenant))

    assert resp.status_code == status.HTTP_200_OK, resp.text
    body = resp.json()
    assert body["has_plan"] is True
    assert body["state"] == "grace_period"
    assert body["days_remaining"] == -1
    assert body["hours_remaining_in_grace"] == 24


def test_billing_status_without_subscription(client, db_session) -> None:
    tenant = create_tenant(db_session)

    resp = client.get(f"{BILLING}/status", headers=tenant_headers(tenant))

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["state"] == "no_plan"


def test_mercadopago_webhook_marks_invoice_paid(client, db_session, plans, monkeypatch) -> None:
    monkeypatch.setattr(settings, "mercadopago_webhook_token", "hook-secret")
    tenant = _tenant_on(db_session, plans["inicial"])
    body = client.post(
        f"{BILLING}/change-plan",
        json={"plan_id": str(plans["pro"].id)},
        headers=tenant_headers(tenant),
    ).json()
    notification = {"external_reference": body["invoice_id"], "status": "approved", "data": {"id": 987}}

    unauthorized = client.post(f"{BILLING}/webhook/mercadopago", json=notification)
    assert unauthorized.status_code == status.HTTP_401_UNAUTHORIZED

    resp = client.post(
        f"{BILLING}/webhook/mercadopago",
        json=notification,
        headers={"Authorization": "Bearer hook-secret"},
    )
    assert resp.status_code == status.HTTP_200_OK, resp.text

    invoices = client.get(f"{BILLING}/invoices", headers=tenant_headers(tenant)).json()
    assert invoices[0]["status"] == "paid"


def test_admin_suspend_and_unsuspend(client, db_session, plans, admin_token) -> None:
    tenant = _tenant_on(db_session, plans["pro"], elapsed_days=5)

    forbidden = client.post(f"{BILLING}/admin/tenants/{tenant.id}/suspend", json={"reason": "Fraude"})
    assert forbidden.status_code == status.HTTP_403_FORBIDDEN

    resp = client.post(
        f"{BILLING}/admin/tenants/{tenant.id}/suspend",
        json={"reason": "Fraude"},
        headers=admin_headers(),
    )
    assert resp.status_code == status.HTTP_200_OK, resp.text
    assert resp.json()["is_suspended"] is True
    assert client.get(f"{BILLING}/status", headers=tenant_headers(tenant)).json()["state"] == "suspended"

    resp = client.post(f"{BILLING}/admin/tenants/{tenant.id}/unsuspend", headers=admin_headers())
    assert resp.status_code == status.HTTP_200_OK, resp.text
    assert resp.json()["is_suspended"] is False
    assert client.get(f"{BILLING}/status", headers=tenant_headers(tenant)).json()["state"] == "active"


def test_admin_suspend_unknown_tenant_is_404(client, admin_token) -> None:
    resp = client.post(f"{BILLING}/admin/tenants/{uuid4()}/suspend", json={}, headers=admin_headers())

    assert resp.status_code == status.HTTP_404_NOT_FOUND
    assert resp.json()["detail"]["error"] == "subscription_not_found"


def test_admin_renewal_sweep(client, db_session, plans, admin_token) -> None:
    due = _tenant_on(db_session, plans["pro"], elapsed_days=31)
    _tenant_on(db_session, plans["pro"], elapsed_days=3)

    resp = client.post(f"{BILLING}/admin/renewals", headers=admin_headers())

    assert resp.status_code == status.HTTP_200_OK, resp.text
    summary = resp.json()
    assert summary["renewed"] == [str(due.id)]
    assert summary["failed"] == {}
    renewal = client.get(f"{BILLING}/invoices", headers=tenant_headers(due)).json()
    assert [invoice["kind"] for invoice in renewal] == ["renewal"]


def test_expired_trial_purchases_plan(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["trial"], elapsed_days=10, days=7, is_trial=True)

    resp = client.post(
        f"{BILLING}/purchase",
        json={"plan_id": str(plans["inicial"].id)},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_200_OK, resp.text
    body = resp.json()
    assert body["status"] == "purchased"
    assert body["amount_due_cents"] == 1210000
    assert body["subscription"]["plan_id"] == str(plans["inicial"].id)
    assert body["subscription"]["is_trial"] is False
    assert body["invoice_id"]
    assert body["checkout_reference"]

    invoices = client.get(f"{BILLING}/invoices", headers=tenant_headers(tenant)).json()
    assert [invoice["kind"] for invoice in invoices] == ["purchase"]
    assert client.get(f"{BILLING}/status", headers=tenant_headers(tenant)).json()["state"] == "active"


def test_purchase_during_running_cycle_is_409(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["inicial"], elapsed_days=5)

    resp = client.post(
        f"{BILLING}/purchase",
        json={"plan_id": str(plans["pro"].id)},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_409_CONFLICT
    assert resp.json()["detail"]["error"] == "cycle_in_progress"


def test_change_plan_to_trial_is_404(client, db_session, plans) -> None:
    tenant = _tenant_on(db_session, plans["pro"], elapsed_days=5)

    resp = client.post(
        f"{BILLING}/change-plan",
        json={"plan_id": str(plans["trial"].id)},
        headers=tenant_headers(tenant),
    )

    assert resp.status_code == status.HTTP_404_NOT_FOUND
    assert resp.json()["detail"]["error"] == "plan_not_found"


def test_mercadopago_webhook_rejects_wrong_token(client, db_session, plans, monkeypatch) -> None:
    monkeypatch.setattr(settings, "mercadopago_webhook_token", "hook-secret")

    resp = client.post(
        f"{BILLING}/webhook/mercadopago",
        json={"external_reference": str(uuid4()), "status": "approved"},
        headers={"Authorization": "Bearer hook-secreto"},
    )

    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["detail"] == "Invalid token"
