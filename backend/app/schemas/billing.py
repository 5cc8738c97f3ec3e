from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.common import IDModel, Timestamped
from app.models.billing import BillingState, ChangeClassification


class PlanRead(IDModel, Timestamped):
    code: str
    name: str
    price_net_cents: int
    currency: str
    max_advisors: int
    max_advisors_ceiling: int | None = None
    extra_advisor_price_cents: int | None = None
    duration_days: int
    plan_type: str
    includes_valuator: bool
    includes_tracker: bool
    is_trial: bool
    is_public: bool
    is_active: bool


class SubscriptionRead(IDModel, Timestamped):
    tenant_id: UUID
    plan_id: UUID
    cycle_start: datetime
    cycle_end: datetime
    is_active: bool
    seat_override: int | None = None
    scheduled_plan_id: UUID | None = None
    scheduled_seat_override: int | None = None
    scheduled_change_at: datetime | None = None
    is_trial: bool
    is_suspended: bool
    version: int


class ProrationQuoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    classification: ChangeClassification
    current_plan_id: UUID
    candidate_plan_id: UUID
    current_price_cents: int
    candidate_price_cents: int
    current_seats: int
    candidate_seats: int
    days_in_cycle: int
    days_remaining: int
    delta_net_cents: int
    tax_cents: int
    total_cents: int
    currency: str
    cycle_start: datetime
    cycle_end: datetime
    effective_date: datetime | None = None
    requires_renewal: bool = False
    note: str | None = None


class PlanChangeRequest(BaseModel):
    plan_id: UUID
    seats: Optional[int] = Field(default=None, ge=1)
    expected_classification: Optional[ChangeClassification] = None


class PaymentRequiredRead(BaseModel):
    status: Literal["payment_required"] = "payment_required"
    amount_due_cents: int
    currency: str
    invoice_id: UUID | None = None
    checkout_reference: str | None = None
    checkout_url: str | None = None
    quote: ProrationQuoteRead


class PlanPurchaseRequest(BaseModel):
    plan_id: UUID
    seats: Optional[int] = Field(default=None, ge=1)


class PlanPurchasedRead(BaseModel):
    status: Literal["purchased"] = "purchased"
    subscription: SubscriptionRead
    amount_due_cents: int
    currency: str
    invoice_id: UUID | None = None
    checkout_reference: str | None = None
    checkout_url: str | None = None


class ChangeScheduledRead(BaseModel):
    status: Literal["scheduled"] = "scheduled"
    effective_date: datetime
    plan_id: UUID
    seats: int | None = None


class NoChangeRead(BaseModel):
    status: Literal["no_change"] = "no_change"


ChangeResultRead = Annotated[
    Union[PaymentRequiredRead, ChangeScheduledRead, NoChangeRead],
    Field(discriminator="status"),
]


class BillingStatusRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    has_plan: bool
    state: BillingState
    is_trial: bool = False
    is_suspended: bool = False
    is_expired: bool = False
    in_grace_period: bool = False
    days_remaining: int | None = None
    hours_remaining_in_grace: int | None = None
    plan_id: UUID | None = None
    plan_name: str | None = None
    plan_type: str | None = None
    includes_valuator: bool = False
    includes_tracker: bool = False
    price_net_cents: int | None = None
    price_total_cents: int | None = None
    currency: str | None = None
    cycle_start: datetime | None = None
    cycle_end: datetime | None = None
    next_charge_at: datetime | None = None
    scheduled_plan_id: UUID | None = None
    scheduled_change_at: datetime | None = None
    suspension_reason: str | None = None


class InvoiceRead(IDModel, Timestamped):
    tenant_id: UUID
    subscription_id: UUID
    plan_id: UUID
    kind: str
    gateway: str
    external_id: str | None = None
    checkout_url: str | None = None
    currency: str
    amount_net_cents: int
    tax_cents: int
    amount_cents: int
    due_date: datetime
    status: str
    paid_at: datetime | None = None


class SuspensionRequest(BaseModel):
    reason: str | None = None


class RenewalSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    renewed: list[UUID]
    skipped: list[UUID]
    conflicts: list[UUID]
    failed: dict[UUID, str]
