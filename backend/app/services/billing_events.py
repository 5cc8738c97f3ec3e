from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

import httpx
from sqlmodel import Session, select

from app.core.config import settings
from app.core.logging_setup import get_logger
from app.models.audit import BillingEvent
from app.models.billing import Subscription

log = get_logger("billing.events")

SUBSCRIPTION_CHANGED = "subscription.changed"


class BillingEventRecorder:
    """Writes billing audit rows into the caller's transaction (no commit)."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def record(
        self,
        event_type: str,
        tenant_id: UUID,
        subscription_id: UUID | None = None,
        actor: str | None = None,
        details: dict | None = None,
    ) -> BillingEvent:
        event = BillingEvent(
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            event_type=event_type,
            actor=actor,
            details=details or {},
        )
        self.session.add(event)
        return event

    def list_events(
        self,
        tenant_id: UUID,
        event_type: Optional[str] = None,
        start_at: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[BillingEvent]:
        query = select(BillingEvent).where(BillingEvent.tenant_id == tenant_id)
        if event_type:
            query = query.where(BillingEvent.event_type == event_type)
        if start_at:
            query = query.where(BillingEvent.created_at >= start_at)
        return list(self.session.exec(query.order_by(BillingEvent.created_at.desc()).limit(limit)).all())


class SubscriptionEventPublisher:
    """Pushes ``subscription.changed`` notifications to an optional webhook.

    Delivery happens after commit and outside the billing transaction; a failed
    delivery is logged and reported through the return value.
    """

    def __init__(self, webhook_url: str | None = None, timeout: float | None = None) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else settings.billing_events_webhook_url
        self.timeout = timeout if timeout is not None else settings.billing_events_timeout_seconds

    def publish(self, subscription: Subscription, reason: str) -> bool:
        if not self.webhook_url:
            return False
        payload = {
            "event": SUBSCRIPTION_CHANGED,
            "reason": reason,
            "tenant_id": str(subscription.tenant_id),
            "subscription_id": str(subscription.id),
            "plan_id": str(subscription.plan_id),
            "version": subscription.version,
            "cycle_end": subscription.cycle_end.isoformat(),
            "scheduled_plan_id": str(subscription.scheduled_plan_id) if subscription.scheduled_plan_id else None,
        }
        try:
            response = httpx.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning("Failed to publish %s for tenant %s: %s", SUBSCRIPTION_CHANGED, subscription.tenant_id, exc)
            return False
        return True
