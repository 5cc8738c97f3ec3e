from __future__ import annotations

import hmac
from typing import List, Optional
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlmodel import Session

from app.api.deps import get_current_tenant, get_db, require_admin
from app.core.config import settings
from app.core.logging_setup import get_logger
from app.models.tenant import Tenant
from app.schemas.billing import (
    BillingStatusRead,
    ChangeResultRead,
    ChangeScheduledRead,
    InvoiceRead,
    NoChangeRead,
    PaymentRequiredRead,
    PlanChangeRequest,
    PlanPurchasedRead,
    PlanPurchaseRequest,
    PlanRead,
    ProrationQuoteRead,
    RenewalSummaryRead,
    SubscriptionRead,
    SuspensionRequest,
)
from app.services.billing import BillingService, ChangeScheduled, PaymentRequired
from app.services.billing_errors import BillingError
from app.services.payments import PaymentService
from app.services.plan_catalog import PlanRepository
from app.utils.money import format_amount

router = APIRouter(prefix="/billing", tags=["billing"])
log = get_logger("api.billing")


def _service(session: Session) -> BillingService:
    return BillingService(session)


def _http_error(exc: BillingError) -> HTTPException:
    if exc.http_status >= 500:
        log.error("Billing data error (%s): %s %s", exc.code, exc, exc.context)
    return HTTPException(status_code=exc.http_status, detail=exc.to_detail())


@router.get("/plans", response_model=List[PlanRead])
def list_plans(session: Session = Depends(get_db)) -> List[PlanRead]:
    plans = PlanRepository(session)
    available = plans.list_plans()
    if not available:
        plans.ensure_default_plans(currency=settings.billing_currency)
        available = plans.list_plans()
    return [PlanRead.model_validate(plan) for plan in available]


@router.post("/seed-plans", response_model=List[PlanRead], status_code=status.HTTP_201_CREATED)
def seed_default_plans(
    session: Session = Depends(get_db),
    _: str = Depends(require_admin),
) -> List[PlanRead]:
    plans = PlanRepository(session).ensure_default_plans(currency=settings.billing_currency)
    return [PlanRead.model_validate(plan) for plan in plans]


@router.get("/subscription", response_model=SubscriptionRead)
def get_subscription(
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> SubscriptionRead:
    try:
        subscription = _service(session).subscriptions.get_active(tenant.id)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return SubscriptionRead.model_validate(subscription)


@router.get("/preview-change", response_model=ProrationQuoteRead)
def preview_change(
    plan_id: UUID,
    seats: Optional[int] = Query(default=None, ge=1),
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> ProrationQuoteRead:
    try:
        quote = _service(session).preview_change(tenant.id, plan_id, seats=seats)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return ProrationQuoteRead.model_validate(quote)


@router.post("/change-plan", response_model=ChangeResultRead)
def change_plan(
    payload: PlanChangeRequest,
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> ChangeResultRead:
    service = _service(session)
    try:
        result = service.confirm_change_with_retry(
            tenant.id,
            payload.plan_id,
            seats=payload.seats,
            expected_classification=payload.expected_classification,
            actor=f"tenant:{tenant.id}",
        )
    except BillingError as exc:
        raise _http_error(exc) from exc

    if isinstance(result, ChangeScheduled):
        return ChangeScheduledRead(effective_date=result.effective_date, plan_id=result.plan_id, seats=result.seats)
    if not isinstance(result, PaymentRequired):
        return NoChangeRead()

    response = PaymentRequiredRead(
        amount_due_cents=result.amount_due_cents,
        currency=result.currency,
        invoice_id=result.invoice_id,
        quote=ProrationQuoteRead.model_validate(result.quote),
    )
    if result.invoice_id is not None:
        description = f"Upgrade de plan - {tenant.name} ({format_amount(result.amount_due_cents, result.currency)})"
        _attach_checkout(session, result.invoice_id, description, response)
    return response


@router.post("/purchase", response_model=PlanPurchasedRead)
def purchase_plan(
    payload: PlanPurchaseRequest,
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> PlanPurchasedRead:
    try:
        result = _service(session).purchase_plan(
            tenant.id,
            payload.plan_id,
            seats=payload.seats,
            actor=f"tenant:{tenant.id}",
        )
    except BillingError as exc:
        raise _http_error(exc) from exc

    response = PlanPurchasedRead(
        subscription=SubscriptionRead.model_validate(result.subscription),
        amount_due_cents=result.amount_due_cents,
        currency=result.currency,
        invoice_id=result.invoice_id,
    )
    if result.invoice_id is not None:
        description = f"Compra de plan - {tenant.name} ({format_amount(result.amount_due_cents, result.currency)})"
        _attach_checkout(session, result.invoice_id, description, response)
    return response


def _attach_checkout(
    session: Session,
    invoice_id: UUID,
    description: str,
    response: PaymentRequiredRead | PlanPurchasedRead,
) -> None:
    # The subscription write is committed at this point; checkout can be retried from the invoice.
    payments = PaymentService(session)
    invoice = payments.get_invoice(invoice_id)
    try:
        invoice = payments.create_checkout(invoice, description=description)
    except httpx.HTTPError as exc:
        log.error("Checkout creation failed for invoice %s: %s", invoice_id, exc)
        return
    response.checkout_reference = invoice.external_id
    response.checkout_url = invoice.checkout_url


@router.get("/status", response_model=BillingStatusRead)
def billing_status(
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> BillingStatusRead:
    try:
        projected = _service(session).billing_status(tenant.id)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return BillingStatusRead.model_validate(projected)


@router.get("/invoices", response_model=List[InvoiceRead])
def list_invoices(
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> List[InvoiceRead]:
    invoices = PaymentService(session).list_invoices(tenant.id)
    return [InvoiceRead.model_validate(invoice) for invoice in invoices]


@router.post("/invoices/{invoice_id}/checkout", response_model=InvoiceRead)
def checkout_invoice(
    invoice_id: UUID,
    session: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> InvoiceRead:
    payments = PaymentService(session)
    invoice = payments.get_invoice(invoice_id)
    if not invoice or invoice.tenant_id != tenant.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    try:
        invoice = payments.create_checkout(invoice, description=f"Factura {invoice.kind} - {tenant.name}")
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment gateway unavailable") from exc
    return InvoiceRead.model_validate(invoice)


@router.post("/webhook/mercadopago", status_code=status.HTTP_200_OK)
async def mercadopago_webhook(request: Request, session: Session = Depends(get_db)) -> dict:
    """Mercado Pago notification with optional bearer token validation.

    If settings.mercadopago_webhook_token is set, require Authorization Bearer with the same token.
    """
    if settings.mercadopago_webhook_token:
        auth = request.headers.get("Authorization")
        if not auth or not auth.lower().startswith("bearer "):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
        token = auth.split(" ", 1)[1]
        if not hmac.compare_digest(token, settings.mercadopago_webhook_token):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    payload = await request.json()
    data = payload.get("data") or {}
    reference = payload.get("external_reference") or data.get("external_reference") or data.get("id")
    status_hint = payload.get("status") or data.get("status") or "pending"
    if reference:
        PaymentService(session).reconcile_payment(
            reference=str(reference),
            status=str(status_hint),
            details={"payment_id": str(data.get("id"))} if data.get("id") else None,
        )
    return {"ok": True}


@router.post("/admin/tenants/{tenant_id}/suspend", response_model=SubscriptionRead)
def suspend_tenant(
    tenant_id: UUID,
    payload: SuspensionRequest,
    session: Session = Depends(get_db),
    actor: str = Depends(require_admin),
) -> SubscriptionRead:
    try:
        subscription = _service(session).set_suspended(tenant_id, True, reason=payload.reason, actor=actor)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return SubscriptionRead.model_validate(subscription)


@router.post("/admin/tenants/{tenant_id}/unsuspend", response_model=SubscriptionRead)
def unsuspend_tenant(
    tenant_id: UUID,
    session: Session = Depends(get_db),
    actor: str = Depends(require_admin),
) -> SubscriptionRead:
    try:
        subscription = _service(session).set_suspended(tenant_id, False, actor=actor)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return SubscriptionRead.model_validate(subscription)


@router.post("/admin/renewals", response_model=RenewalSummaryRead)
def run_renewals(
    session: Session = Depends(get_db),
    _: str = Depends(require_admin),
) -> RenewalSummaryRead:
    summary = _service(session).renew_due_subscriptions()
    return RenewalSummaryRead.model_validate(summary)
