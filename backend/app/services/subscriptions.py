from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from app.core.logging_setup import get_logger
from app.models.billing import Plan, Subscription
from app.services.billing_errors import InvalidCycle, SubscriptionNotFound, VersionConflict

log = get_logger("subscriptions")

# Columns written by save(); identity columns (id, tenant_id, created_at) never change.
_MUTABLE_FIELDS = (
    "plan_id",
    "cycle_start",
    "cycle_end",
    "is_active",
    "seat_override",
    "scheduled_plan_id",
    "scheduled_seat_override",
    "scheduled_change_at",
    "is_trial",
    "is_suspended",
    "suspension_reason",
    "suspended_at",
)


def check_subscription_invariants(subscription: Subscription) -> None:
    if subscription.cycle_end <= subscription.cycle_start:
        raise InvalidCycle(
            "Cycle end must be after cycle start",
            subscription_id=subscription.id,
            cycle_start=subscription.cycle_start,
            cycle_end=subscription.cycle_end,
        )
    if subscription.scheduled_change_at is not None and subscription.scheduled_change_at < subscription.cycle_end:
        raise InvalidCycle(
            "Scheduled change cannot take effect before the current cycle ends",
            subscription_id=subscription.id,
            scheduled_change_at=subscription.scheduled_change_at,
            cycle_end=subscription.cycle_end,
        )


class SubscriptionRepository:
    """Persistence for per-tenant subscription state.

    Subscriptions are handed out detached from the session so callers can edit
    them freely; the only way back into the database is ``save``, which performs
    a compare-and-swap on ``version`` inside the session's current transaction.
    Committing (or rolling back) is the caller's job, so a plan change and the
    rows written alongside it land atomically.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_active(self, tenant_id: UUID | str) -> Subscription | None:
        tenant_uuid = UUID(str(tenant_id))
        # populate_existing: always the committed row, never a stale identity-map copy
        subscription = self.session.exec(
            select(Subscription)
            .where(
                Subscription.tenant_id == tenant_uuid,
                Subscription.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        ).first()
        if subscription is not None:
            self.session.expunge(subscription)
        return subscription

    def get_active(self, tenant_id: UUID | str) -> Subscription:
        subscription = self.find_active(tenant_id)
        if subscription is None:
            raise SubscriptionNotFound(tenant_id)
        return subscription

    def create_trial(self, tenant_id: UUID, plan: Plan, now: datetime, days: int | None = None) -> Subscription:
        existing = self.find_active(tenant_id)
        if existing is not None:
            log.info("Tenant %s already has active subscription %s; trial not created", tenant_id, existing.id)
            return existing
        duration = days if days and days > 0 else plan.duration_days
        subscription = Subscription(
            tenant_id=tenant_id,
            plan_id=plan.id,
            cycle_start=now,
            cycle_end=now + timedelta(days=duration),
            is_trial=plan.is_trial,
        )
        check_subscription_invariants(subscription)
        self.session.add(subscription)
        self.session.flush()
        return subscription

    def save(self, subscription: Subscription, expected_version: int, now: datetime | None = None) -> Subscription:
        check_subscription_invariants(subscription)
        now = now or datetime.utcnow()
        table = Subscription.__table__
        values = {field: getattr(subscription, field) for field in _MUTABLE_FIELDS}
        values["version"] = expected_version + 1
        values["updated_at"] = now
        statement = (
            update(table)
            .where(table.c.id == subscription.id)
            .where(table.c.version == expected_version)
            .values(**values)
        )
        result = self.session.connection().execute(statement)
        if result.rowcount != 1:
            log.warning(
                "Version conflict saving subscription %s (expected version %s)",
                subscription.id,
                expected_version,
            )
            raise VersionConflict(subscription.id, expected_version)
        subscription.version = expected_version + 1
        subscription.updated_at = now
        return subscription

    def list_due_for_renewal(self, now: datetime) -> Iterable[Subscription]:
        return self.session.exec(
            select(Subscription)
            .where(
                Subscription.is_active.is_(True),
                Subscription.is_suspended.is_(False),
                Subscription.cycle_end <= now,
            )
            .order_by(Subscription.cycle_end)
        ).all()
