from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.models.billing import BillingState, Plan, Subscription
from app.utils.money import apply_rate, ceil_days


@dataclass(frozen=True)
class BillingStatus:
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

    @property
    def blocks_paid_features(self) -> bool:
        return self.state in {BillingState.NO_PLAN, BillingState.TRIAL_EXPIRED, BillingState.SUSPENDED}


NO_PLAN = BillingStatus(has_plan=False, state=BillingState.NO_PLAN)


def project_billing_status(
    subscription: Subscription | None,
    plan: Plan | None,
    now: datetime,
    tax_rate: Decimal,
    grace_days: int = 2,
    grace_hours: int = 48,
    price_net_cents: int | None = None,
    unpaid_since: datetime | None = None,
) -> BillingStatus:
    """Derive the banner/gating status of a tenant. Pure; safe to call on every request.

    Priority: no plan, then trial (active or expired, no grace), then paid
    (active, grace window of ``grace_days`` after expiry, suspended). A manual
    suspension overrides the dates for paid plans and ends a trial.

    ``unpaid_since`` is the due date of the oldest unpaid cycle charge. A paid
    plan only runs until then, so a renewed but unpaid cycle still lapses into
    grace and suspension.
    """
    if subscription is None or plan is None or not subscription.is_active:
        return NO_PLAN

    is_trial = subscription.is_trial or plan.is_trial
    expires_at = subscription.cycle_end
    if unpaid_since is not None and not is_trial and unpaid_since < expires_at:
        expires_at = unpaid_since
    days_remaining = ceil_days(now, expires_at)
    net = plan.price_net_cents if price_net_cents is None else price_net_cents

    in_grace = False
    hours_in_grace: int | None = None
    if subscription.is_suspended:
        state = BillingState.SUSPENDED
    elif is_trial:
        state = BillingState.ACTIVE_TRIAL if days_remaining >= 0 else BillingState.TRIAL_EXPIRED
    elif days_remaining >= 0:
        state = BillingState.ACTIVE
    elif days_remaining >= -grace_days:
        state = BillingState.GRACE_PERIOD
        in_grace = True
        hours_in_grace = max(grace_hours + days_remaining * 24, 0)
    else:
        state = BillingState.SUSPENDED
        hours_in_grace = 0

    return BillingStatus(
        has_plan=True,
        state=state,
        is_trial=is_trial,
        is_suspended=state is BillingState.SUSPENDED,
        is_expired=days_remaining < 0,
        in_grace_period=in_grace,
        days_remaining=days_remaining,
        hours_remaining_in_grace=hours_in_grace,
        plan_id=plan.id,
        plan_name=plan.name,
        plan_type=plan.plan_type,
        includes_valuator=plan.includes_valuator,
        includes_tracker=plan.includes_tracker,
        price_net_cents=net,
        price_total_cents=net + apply_rate(net, tax_rate),
        currency=plan.currency,
        cycle_start=subscription.cycle_start,
        cycle_end=subscription.cycle_end,
        next_charge_at=None if is_trial else subscription.cycle_end,
        scheduled_plan_id=subscription.scheduled_plan_id,
        scheduled_change_at=subscription.scheduled_change_at,
        suspension_reason=subscription.suspension_reason if subscription.is_suspended else None,
    )
