"""Proration of mid-cycle plan changes.

Everything here is pure: the caller supplies the subscription snapshot, both
plans and the current instant, and gets back a ``ProrationQuote``. Amounts are
integer cents; intermediate values are exact ``Decimal`` and rounded half-up
once per amount.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.models.billing import ChangeClassification, Plan, Subscription
from app.services.billing_errors import InvalidCycle
from app.services.plan_catalog import effective_price_cents, seat_count_for
from app.utils.money import apply_rate, ceil_days, round_cents

NOTE_UPGRADE = "Se cobrará solo la diferencia prorrateada por los días restantes del ciclo actual."
NOTE_DOWNGRADE = "El downgrade se aplicará desde el próximo ciclo; sin reembolsos ni créditos."
NOTE_SEAT_CHANGE = "El ajuste de asesores se aplicará desde el próximo ciclo; el plan actual sigue vigente hasta entonces."
NOTE_NO_CHANGE = "El nuevo plan tiene el mismo precio que el actual."
NOTE_RENEWAL_REQUIRED = "El ciclo actual ya venció; renová la suscripción antes de cambiar de plan."


@dataclass(frozen=True)
class ProrationQuote:
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
    effective_date: datetime | None
    requires_renewal: bool
    note: str | None

    @property
    def fraction_remaining(self) -> Decimal:
        return Decimal(self.days_remaining) / Decimal(self.days_in_cycle)


def cycle_days(cycle_start: datetime, cycle_end: datetime) -> int:
    days = ceil_days(cycle_start, cycle_end)
    if days <= 0:
        raise InvalidCycle(
            "Billing cycle has no duration",
            cycle_start=cycle_start,
            cycle_end=cycle_end,
        )
    return days


def remaining_days(cycle_end: datetime, now: datetime, days_in_cycle: int) -> int:
    return min(max(ceil_days(now, cycle_end), 0), days_in_cycle)


def prorate_delta(price_delta_cents: int, days_remaining: int, days_in_cycle: int) -> int:
    return round_cents(Decimal(price_delta_cents) * Decimal(days_remaining) / Decimal(days_in_cycle))


def calculate_proration(
    subscription: Subscription,
    current_plan: Plan,
    candidate_plan: Plan,
    now: datetime,
    tax_rate: Decimal,
    requested_seats: int | None = None,
) -> ProrationQuote:
    days_in_cycle = cycle_days(subscription.cycle_start, subscription.cycle_end)
    days_left = remaining_days(subscription.cycle_end, now, days_in_cycle)

    current_seats = seat_count_for(current_plan, current=subscription.seat_override)
    same_plan = candidate_plan.id == current_plan.id
    candidate_seats = seat_count_for(
        candidate_plan,
        requested=requested_seats,
        current=subscription.seat_override if same_plan else None,
    )
    current_price = effective_price_cents(current_plan, current_seats)
    candidate_price = effective_price_cents(candidate_plan, candidate_seats)

    delta_net = 0
    tax = 0
    effective_date: datetime | None = None
    requires_renewal = False

    if candidate_price > current_price:
        classification = ChangeClassification.UPGRADE
        delta_net = prorate_delta(candidate_price - current_price, days_left, days_in_cycle)
        tax = apply_rate(delta_net, tax_rate)
        effective_date = now
        requires_renewal = days_left == 0
        note = NOTE_RENEWAL_REQUIRED if requires_renewal else NOTE_UPGRADE
    elif candidate_price < current_price:
        classification = ChangeClassification.DOWNGRADE
        effective_date = subscription.cycle_end
        note = NOTE_DOWNGRADE
    elif same_plan and candidate_seats != current_seats:
        # Seat change with no price impact: deferred like a downgrade
        classification = ChangeClassification.DOWNGRADE
        effective_date = subscription.cycle_end
        note = NOTE_SEAT_CHANGE
    else:
        classification = ChangeClassification.NO_CHANGE
        note = NOTE_NO_CHANGE

    if classification is ChangeClassification.DOWNGRADE and same_plan:
        note = NOTE_SEAT_CHANGE

    return ProrationQuote(
        classification=classification,
        current_plan_id=current_plan.id,
        candidate_plan_id=candidate_plan.id,
        current_price_cents=current_price,
        candidate_price_cents=candidate_price,
        current_seats=current_seats,
        candidate_seats=candidate_seats,
        days_in_cycle=days_in_cycle,
        days_remaining=days_left,
        delta_net_cents=delta_net,
        tax_cents=tax,
        total_cents=delta_net + tax,
        currency=current_plan.currency,
        cycle_start=subscription.cycle_start,
        cycle_end=subscription.cycle_end,
        effective_date=effective_date,
        requires_renewal=requires_renewal,
        note=note,
    )
