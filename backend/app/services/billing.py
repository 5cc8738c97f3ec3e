from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, ClassVar, Union
from uuid import UUID

from sqlmodel import Session, select

from app.core.config import Settings, settings as default_settings
from app.core.logging_setup import get_logger
from app.models.billing import ChangeClassification, Invoice, InvoiceKind, InvoiceStatus, Plan, Subscription
from app.services.billing_errors import (
    BillingError,
    CycleInProgress,
    PlanNotFound,
    QuoteStale,
    RenewalRequired,
    VersionConflict,
)
from app.services.billing_events import BillingEventRecorder, SubscriptionEventPublisher
from app.services.billing_status import BillingStatus, NO_PLAN, project_billing_status
from app.services.plan_catalog import PlanRepository, effective_price_cents, seat_count_for
from app.services.proration import ProrationQuote, calculate_proration
from app.services.subscriptions import SubscriptionRepository
from app.utils.money import apply_rate

log = get_logger("billing")


@dataclass
class PaymentRequired:
    status: ClassVar[str] = "payment_required"

    amount_due_cents: int
    currency: str
    invoice_id: UUID | None
    quote: ProrationQuote


@dataclass
class ChangeScheduled:
    status: ClassVar[str] = "scheduled"

    effective_date: datetime
    plan_id: UUID
    seats: int | None = None


@dataclass
class NoChange:
    status: ClassVar[str] = "no_change"


@dataclass
class PlanPurchased:
    status: ClassVar[str] = "purchased"

    subscription: Subscription
    amount_due_cents: int
    currency: str
    invoice_id: UUID | None


ChangeResult = Union[PaymentRequired, ChangeScheduled, NoChange]

# Unpaid charges of these kinds pay for access to a cycle
CYCLE_CHARGE_KINDS = (InvoiceKind.RENEWAL.value, InvoiceKind.PURCHASE.value)
UNPAID_STATUSES = (InvoiceStatus.PENDING.value, InvoiceStatus.FAILED.value)


@dataclass
class RenewalSummary:
    renewed: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    conflicts: list[UUID] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)


class BillingService:
    """Plan changes and cycle renewals for a tenant's subscription.

    Every write reads the subscription once, recomputes what to do from that
    snapshot and stores it with a version check, so concurrent requests for the
    same tenant cannot both apply. Payment capture is left to the caller: an
    upgrade only produces the pending invoice and the amount due.
    """

    def __init__(
        self,
        session: Session,
        config: Settings | None = None,
        publisher: SubscriptionEventPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session = session
        self.config = config or default_settings
        self.plans = PlanRepository(session)
        self.subscriptions = SubscriptionRepository(session)
        self.events = BillingEventRecorder(session)
        self.publisher = publisher or SubscriptionEventPublisher()
        self._clock = clock or datetime.utcnow

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def preview_change(
        self,
        tenant_id: UUID,
        plan_id: UUID | str,
        seats: int | None = None,
        now: datetime | None = None,
    ) -> ProrationQuote:
        subscription = self.subscriptions.get_active(tenant_id)
        return self._quote(subscription, plan_id, seats, now or self._clock())

    def billing_status(self, tenant_id: UUID, now: datetime | None = None) -> BillingStatus:
        subscription = self.subscriptions.find_active(tenant_id)
        if subscription is None:
            return NO_PLAN
        plan = self.plans.get_plan(subscription.plan_id, include_inactive=True)
        seats = seat_count_for(plan, current=subscription.seat_override)
        return project_billing_status(
            subscription,
            plan,
            now or self._clock(),
            tax_rate=self.config.billing_tax_rate,
            grace_days=self.config.billing_grace_days,
            grace_hours=self.config.billing_grace_hours,
            price_net_cents=effective_price_cents(plan, seats),
            unpaid_since=self._oldest_unpaid_due_date(subscription),
        )

    def _oldest_unpaid_due_date(self, subscription: Subscription) -> datetime | None:
        return self.session.exec(
            select(Invoice.due_date)
            .where(
                Invoice.subscription_id == subscription.id,
                Invoice.kind.in_(CYCLE_CHARGE_KINDS),
                Invoice.status.in_(UNPAID_STATUSES),
            )
            .order_by(Invoice.due_date)
        ).first()

    # ------------------------------------------------------------------
    # Plan changes
    # ------------------------------------------------------------------
    def confirm_change(
        self,
        tenant_id: UUID,
        plan_id: UUID | str,
        seats: int | None = None,
        expected_classification: ChangeClassification | str | None = None,
        now: datetime | None = None,
        actor: str | None = None,
    ) -> ChangeResult:
        now = now or self._clock()
        subscription = self.subscriptions.get_active(tenant_id)
        expected_version = subscription.version
        quote = self._quote(subscription, plan_id, seats, now)

        if expected_classification is not None:
            expected = ChangeClassification(expected_classification)
            if expected is not quote.classification:
                raise QuoteStale(expected.value, quote.classification.value)

        if quote.classification is ChangeClassification.NO_CHANGE:
            return NoChange()
        if quote.requires_renewal:
            raise RenewalRequired(tenant_id)

        try:
            if quote.classification is ChangeClassification.UPGRADE:
                result: ChangeResult = self._apply_upgrade(subscription, quote, expected_version, now, actor)
            else:
                result = self._schedule_change(subscription, quote, expected_version, now, actor)
                if result is None:
                    return ChangeScheduled(
                        effective_date=subscription.scheduled_change_at,
                        plan_id=subscription.scheduled_plan_id,
                        seats=subscription.scheduled_seat_override,
                    )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        log.info(
            "Tenant %s plan change %s: %s -> %s (%s)",
            tenant_id,
            quote.classification.value,
            quote.current_plan_id,
            quote.candidate_plan_id,
            result.status,
        )
        self.publisher.publish(subscription, reason=quote.classification.value)
        return result

    def confirm_change_with_retry(self, tenant_id: UUID, plan_id: UUID | str, **kwargs) -> ChangeResult:
        """``confirm_change`` retried on concurrent writes, each attempt from a fresh read."""
        attempts = max(self.config.billing_confirm_max_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                return self.confirm_change(tenant_id, plan_id, **kwargs)
            except VersionConflict:
                if attempt == attempts:
                    raise
                log.info("Retrying plan change for tenant %s after version conflict (attempt %d)", tenant_id, attempt)
        raise AssertionError("unreachable")  # pragma: no cover

    def purchase_plan(
        self,
        tenant_id: UUID,
        plan_id: UUID | str,
        seats: int | None = None,
        now: datetime | None = None,
        actor: str | None = None,
    ) -> PlanPurchased:
        """Start a new paid cycle at ``now`` once the current one has elapsed.

        This is how an expired trial (or a lapsed subscription) buys a plan: the
        cycle restarts on the chosen plan and the full price is invoiced. While a
        cycle is still running the tenant must go through ``confirm_change``.
        """
        now = now or self._clock()
        subscription = self.subscriptions.get_active(tenant_id)
        if subscription.cycle_end > now:
            raise CycleInProgress(tenant_id, subscription.cycle_end.isoformat())
        expected_version = subscription.version
        plan = self._candidate_plan(plan_id)
        seat_count = seat_count_for(plan, requested=seats)
        previous_plan_id = subscription.plan_id

        subscription.plan_id = plan.id
        subscription.seat_override = seat_count if plan.is_custom else None
        subscription.is_trial = False
        subscription.cycle_start = now
        subscription.cycle_end = now + timedelta(days=plan.duration_days)
        subscription.scheduled_plan_id = None
        subscription.scheduled_seat_override = None
        subscription.scheduled_change_at = None

        try:
            self.subscriptions.save(subscription, expected_version, now=now)
            invoice = self._cycle_invoice(subscription, plan, InvoiceKind.PURCHASE)
            self.events.record(
                "plan.purchased",
                tenant_id=subscription.tenant_id,
                subscription_id=subscription.id,
                actor=actor,
                details={
                    "from_plan_id": str(previous_plan_id),
                    "to_plan_id": str(plan.id),
                    "seats": seat_count,
                    "cycle_end": subscription.cycle_end.isoformat(),
                    "invoice_id": str(invoice.id) if invoice else None,
                },
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        log.info("Tenant %s purchased plan %s until %s", tenant_id, plan.code, subscription.cycle_end.isoformat())
        self.publisher.publish(subscription, reason="purchase")
        return PlanPurchased(
            subscription=subscription,
            amount_due_cents=invoice.amount_cents if invoice else 0,
            currency=plan.currency,
            invoice_id=invoice.id if invoice else None,
        )

    def _apply_upgrade(
        self,
        subscription: Subscription,
        quote: ProrationQuote,
        expected_version: int,
        now: datetime,
        actor: str | None,
    ) -> PaymentRequired:
        candidate = self.plans.get_plan(quote.candidate_plan_id)
        previous_plan_id = subscription.plan_id
        subscription.plan_id = candidate.id
        subscription.seat_override = quote.candidate_seats if candidate.is_custom else None
        subscription.is_trial = candidate.is_trial
        # An upgrade supersedes any deferred downgrade
        subscription.scheduled_plan_id = None
        subscription.scheduled_seat_override = None
        subscription.scheduled_change_at = None
        self.subscriptions.save(subscription, expected_version, now=now)

        invoice = None
        if quote.total_cents > 0:
            invoice = Invoice(
                tenant_id=subscription.tenant_id,
                subscription_id=subscription.id,
                plan_id=candidate.id,
                kind=InvoiceKind.UPGRADE_PRORATION.value,
                currency=quote.currency,
                amount_net_cents=quote.delta_net_cents,
                tax_cents=quote.tax_cents,
                amount_cents=quote.total_cents,
                due_date=now,
                status=InvoiceStatus.PENDING.value,
                details={
                    "previous_plan_id": str(previous_plan_id),
                    "days_in_cycle": quote.days_in_cycle,
                    "days_remaining": quote.days_remaining,
                    "cycle_start": quote.cycle_start.isoformat(),
                    "cycle_end": quote.cycle_end.isoformat(),
                },
            )
            self.session.add(invoice)
        self.events.record(
            "plan.upgraded",
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id,
            actor=actor,
            details={
                "from_plan_id": str(previous_plan_id),
                "to_plan_id": str(candidate.id),
                "seats": quote.candidate_seats,
                "total_cents": quote.total_cents,
            },
        )
        return PaymentRequired(
            amount_due_cents=quote.total_cents,
            currency=quote.currency,
            invoice_id=invoice.id if invoice else None,
            quote=quote,
        )

    def _schedule_change(
        self,
        subscription: Subscription,
        quote: ProrationQuote,
        expected_version: int,
        now: datetime,
        actor: str | None,
    ) -> ChangeScheduled | None:
        """Record a deferred change; None when the same change is already scheduled."""
        candidate = self.plans.get_plan(quote.candidate_plan_id)
        seats = quote.candidate_seats if candidate.is_custom else None
        if (
            subscription.scheduled_plan_id == candidate.id
            and subscription.scheduled_seat_override == seats
            and subscription.scheduled_change_at == subscription.cycle_end
        ):
            return None
        subscription.scheduled_plan_id = candidate.id
        subscription.scheduled_seat_override = seats
        subscription.scheduled_change_at = subscription.cycle_end
        self.subscriptions.save(subscription, expected_version, now=now)
        self.events.record(
            "plan.change_scheduled",
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id,
            actor=actor,
            details={
                "from_plan_id": str(subscription.plan_id),
                "to_plan_id": str(candidate.id),
                "seats": seats,
                "effective_date": subscription.cycle_end.isoformat(),
            },
        )
        return ChangeScheduled(effective_date=subscription.cycle_end, plan_id=candidate.id, seats=seats)

    # ------------------------------------------------------------------
    # Cycle boundary
    # ------------------------------------------------------------------
    def apply_cycle_boundary(self, tenant_id: UUID, now: datetime | None = None) -> Subscription | None:
        """Advance an elapsed cycle, applying a due scheduled change first.

        Returns the renewed subscription, or None when nothing was due. Trials
        only move forward when a change to a paid plan was scheduled.
        """
        now = now or self._clock()
        subscription = self.subscriptions.find_active(tenant_id)
        if subscription is None or subscription.cycle_end > now or subscription.is_suspended:
            return None
        change_due = (
            subscription.scheduled_plan_id is not None
            and subscription.scheduled_change_at is not None
            and subscription.scheduled_change_at <= now
        )
        if subscription.is_trial and not change_due:
            return None

        expected_version = subscription.version
        previous_plan_id = subscription.plan_id
        if change_due:
            plan = self.plans.get_plan(subscription.scheduled_plan_id)
            subscription.plan_id = plan.id
            subscription.seat_override = subscription.scheduled_seat_override if plan.is_custom else None
            subscription.is_trial = plan.is_trial
            subscription.scheduled_plan_id = None
            subscription.scheduled_seat_override = None
            subscription.scheduled_change_at = None
        else:
            plan = self.plans.get_plan(subscription.plan_id, include_inactive=True)

        new_start = subscription.cycle_end
        subscription.cycle_start = new_start
        subscription.cycle_end = new_start + timedelta(days=plan.duration_days)

        try:
            self.subscriptions.save(subscription, expected_version, now=now)
            invoice = self._cycle_invoice(subscription, plan, InvoiceKind.RENEWAL)
            self.events.record(
                "subscription.renewed",
                tenant_id=subscription.tenant_id,
                subscription_id=subscription.id,
                actor="scheduler",
                details={
                    "previous_plan_id": str(previous_plan_id),
                    "plan_id": str(plan.id),
                    "cycle_start": subscription.cycle_start.isoformat(),
                    "cycle_end": subscription.cycle_end.isoformat(),
                    "invoice_id": str(invoice.id) if invoice else None,
                },
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        log.info(
            "Tenant %s renewed on plan %s until %s%s",
            tenant_id,
            plan.code,
            subscription.cycle_end.isoformat(),
            " (scheduled change applied)" if change_due else "",
        )
        self.publisher.publish(subscription, reason="renewal")
        return subscription

    def renew_due_subscriptions(self, now: datetime | None = None) -> RenewalSummary:
        now = now or self._clock()
        summary = RenewalSummary()
        tenant_ids = [s.tenant_id for s in self.subscriptions.list_due_for_renewal(now)]
        for tenant_id in tenant_ids:
            try:
                renewed = self.apply_cycle_boundary(tenant_id, now=now)
            except VersionConflict:
                # Another worker advanced this cycle first
                summary.conflicts.append(tenant_id)
                log.info("Renewal of tenant %s already handled concurrently", tenant_id)
                continue
            except BillingError as exc:
                summary.failed[tenant_id] = exc.code
                log.error("Renewal of tenant %s failed: %s", tenant_id, exc)
                continue
            if renewed is None:
                summary.skipped.append(tenant_id)
            else:
                summary.renewed.append(tenant_id)
        return summary

    def _cycle_invoice(self, subscription: Subscription, plan: Plan, kind: InvoiceKind) -> Invoice | None:
        """Full-price charge for the subscription's current cycle, due when it starts."""
        seats = seat_count_for(plan, current=subscription.seat_override)
        net = effective_price_cents(plan, seats)
        if net <= 0:
            return None
        tax = apply_rate(net, self.config.billing_tax_rate)
        invoice = Invoice(
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id,
            plan_id=plan.id,
            kind=kind.value,
            currency=plan.currency,
            amount_net_cents=net,
            tax_cents=tax,
            amount_cents=net + tax,
            due_date=subscription.cycle_start,
            status=InvoiceStatus.PENDING.value,
            details={
                "seats": seats,
                "cycle_start": subscription.cycle_start.isoformat(),
                "cycle_end": subscription.cycle_end.isoformat(),
            },
        )
        self.session.add(invoice)
        return invoice

    # ------------------------------------------------------------------
    # Administrative suspension
    # ------------------------------------------------------------------
    def set_suspended(
        self,
        tenant_id: UUID,
        suspended: bool,
        reason: str | None = None,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        now = now or self._clock()
        subscription = self.subscriptions.get_active(tenant_id)
        if subscription.is_suspended == suspended:
            return subscription
        expected_version = subscription.version
        subscription.is_suspended = suspended
        subscription.suspension_reason = reason if suspended else None
        subscription.suspended_at = now if suspended else None
        try:
            self.subscriptions.save(subscription, expected_version, now=now)
            self.events.record(
                "subscription.suspended" if suspended else "subscription.unsuspended",
                tenant_id=subscription.tenant_id,
                subscription_id=subscription.id,
                actor=actor,
                details={"reason": reason},
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        log.warning("Tenant %s %s (%s)", tenant_id, "suspended" if suspended else "unsuspended", reason or "-")
        self.publisher.publish(subscription, reason="suspension" if suspended else "unsuspension")
        return subscription

    # ------------------------------------------------------------------
    def _quote(
        self,
        subscription: Subscription,
        plan_id: UUID | str,
        seats: int | None,
        now: datetime,
    ) -> ProrationQuote:
        current_plan = self.plans.get_plan(subscription.plan_id, include_inactive=True)
        candidate_plan = self._candidate_plan(plan_id)
        return calculate_proration(
            subscription,
            current_plan,
            candidate_plan,
            now=now,
            tax_rate=self.config.billing_tax_rate,
            requested_seats=seats,
        )

    def _candidate_plan(self, plan_id: UUID | str) -> Plan:
        """A plan a tenant may move to: active, listed and not a trial."""
        plan = self.plans.get_plan(plan_id)
        if not plan.is_public or plan.is_trial:
            raise PlanNotFound(plan_id)
        return plan
