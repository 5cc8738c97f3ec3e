from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol
from uuid import UUID

import httpx
from sqlmodel import Session, select

from app.core.config import settings
from app.core.logging_setup import get_logger
from app.models.billing import Invoice, InvoiceStatus
from app.services.billing_events import BillingEventRecorder

log = get_logger("payments")

PAID_STATUSES = {"paid", "approved", "succeeded", "accredited"}
FAILED_STATUSES = {"rejected", "cancelled", "refunded", "charged_back", "failed"}


@dataclass
class CheckoutResult:
    reference: str
    checkout_url: str | None
    status: str


class PaymentGateway(Protocol):
    name: str

    def create_checkout(self, invoice: Invoice, description: str) -> CheckoutResult:
        ...


class ManualGateway:
    """Invoices settled offline (bank transfer); reconciled by an operator or webhook."""

    name = "manual"

    def create_checkout(self, invoice: Invoice, description: str) -> CheckoutResult:  # noqa: D401
        return CheckoutResult(
            reference=f"manual-{uuid.uuid4().hex[:12]}",
            checkout_url=None,
            status=InvoiceStatus.PENDING.value,
        )


class MercadoPagoGateway:
    name = "mercadopago"

    def __init__(self, access_token: str, api_url: str | None = None, timeout: float = 15.0) -> None:
        self.access_token = access_token
        self.api_url = (api_url or settings.mercadopago_api_url).rstrip("/")
        self.timeout = timeout

    def create_checkout(self, invoice: Invoice, description: str) -> CheckoutResult:
        app_url = settings.resolved_public_app_url()
        body = {
            "items": [
                {
                    "title": description,
                    "quantity": 1,
                    "unit_price": float(Decimal(invoice.amount_cents) / 100),
                    "currency_id": invoice.currency,
                }
            ],
            "external_reference": str(invoice.id),
            "metadata": {"tenant_id": str(invoice.tenant_id), "invoice_id": str(invoice.id)},
            "back_urls": {
                "success": f"{app_url}/dashboard/empresa?upgrade_status=success",
                "failure": f"{app_url}/dashboard/empresa?upgrade_status=failure",
                "pending": f"{app_url}/dashboard/empresa?upgrade_status=pending",
            },
            "auto_return": "approved",
        }
        response = httpx.post(
            f"{self.api_url}/checkout/preferences",
            headers={"Authorization": f"Bearer {self.access_token}"},
            json=body,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        return CheckoutResult(
            reference=str(data["id"]),
            checkout_url=data.get("init_point") or data.get("sandbox_init_point"),
            status=InvoiceStatus.PENDING.value,
        )


def gateway_from_settings() -> PaymentGateway:
    gateway_name = (settings.billing_default_gateway or "manual").lower()
    if gateway_name == "mercadopago" and settings.mercadopago_access_token:
        return MercadoPagoGateway(settings.mercadopago_access_token)
    return ManualGateway()


class PaymentService:
    """Hands invoices produced by the billing core to a payment gateway and
    reconciles gateway callbacks back onto them."""

    def __init__(self, session: Session, gateway: PaymentGateway | None = None) -> None:
        self.session = session
        self.gateway = gateway or gateway_from_settings()
        self.events = BillingEventRecorder(session)

    def get_invoice(self, invoice_id: UUID | str) -> Invoice | None:
        try:
            return self.session.get(Invoice, UUID(str(invoice_id)))
        except ValueError:
            return None

    def list_invoices(self, tenant_id: UUID) -> list[Invoice]:
        return list(
            self.session.exec(
                select(Invoice).where(Invoice.tenant_id == tenant_id).order_by(Invoice.created_at.desc())
            ).all()
        )

    def create_checkout(self, invoice: Invoice, description: str) -> Invoice:
        if invoice.status != InvoiceStatus.PENDING.value or invoice.amount_cents <= 0:
            return invoice
        if invoice.external_id:
            return invoice
        result = self.gateway.create_checkout(invoice, description)
        invoice.gateway = self.gateway.name
        invoice.external_id = result.reference
        invoice.checkout_url = result.checkout_url
        self.session.add(invoice)
        self.session.commit()
        self.session.refresh(invoice)
        log.info("Checkout %s created for invoice %s via %s", result.reference, invoice.id, self.gateway.name)
        return invoice

    def reconcile_payment(self, *, reference: str, status: str, details: dict | None = None) -> Invoice | None:
        """Apply a gateway callback. ``reference`` is the invoice id or the gateway external id."""
        invoice = self.get_invoice(reference)
        if invoice is None:
            invoice = self.session.exec(select(Invoice).where(Invoice.external_id == reference)).first()
        if invoice is None:
            log.warning("Payment callback for unknown reference %s", reference)
            return None
        if invoice.status == InvoiceStatus.PAID.value:
            return invoice
        normalized = status.lower()
        if normalized in PAID_STATUSES:
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = datetime.utcnow()
        elif normalized in FAILED_STATUSES:
            invoice.status = InvoiceStatus.FAILED.value
        else:
            return invoice
        invoice.details = {**(invoice.details or {}), "gateway_status": normalized, **(details or {})}
        self.session.add(invoice)
        self.events.record(
            f"invoice.{invoice.status}",
            tenant_id=invoice.tenant_id,
            subscription_id=invoice.subscription_id,
            actor=invoice.gateway,
            details={"invoice_id": str(invoice.id), "amount_cents": invoice.amount_cents},
        )
        self.session.commit()
        self.session.refresh(invoice)
        log.info("Invoice %s reconciled as %s", invoice.id, invoice.status)
        return invoice
