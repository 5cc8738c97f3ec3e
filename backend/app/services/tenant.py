from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import Session, select

from app.core.config import settings
from app.core.logging_setup import get_logger
from app.models.billing import Subscription
from app.models.tenant import Tenant
from app.schemas.tenant import TenantCreate
from app.services.billing_events import BillingEventRecorder
from app.services.plan_catalog import PlanRepository
from app.services.subscriptions import SubscriptionRepository

log = get_logger("tenants")


class TenantService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_tenant(self, tenant_id: str | UUID) -> Tenant | None:
        try:
            return self.session.get(Tenant, UUID(str(tenant_id)))
        except ValueError:
            return None

    def get_by_slug(self, slug: str) -> Tenant | None:
        return self.session.exec(select(Tenant).where(Tenant.slug == slug)).first()

    def signup(self, payload: TenantCreate, now: datetime | None = None) -> tuple[Tenant, Subscription]:
        """Create a tenant together with its trial subscription, in one transaction."""
        if self.get_by_slug(payload.slug):
            raise ValueError("Slug already in use")
        now = now or datetime.utcnow()
        plans = PlanRepository(self.session)
        plans.ensure_default_plans(currency=settings.billing_currency)
        trial_plan = plans.get_trial_plan()

        tenant = Tenant(**payload.model_dump())
        self.session.add(tenant)
        try:
            self.session.flush()
            subscription = SubscriptionRepository(self.session).create_trial(
                tenant.id, trial_plan, now, days=settings.billing_trial_days
            )
            BillingEventRecorder(self.session).record(
                "subscription.trial_started",
                tenant_id=tenant.id,
                subscription_id=subscription.id,
                details={"plan_id": str(trial_plan.id), "cycle_end": subscription.cycle_end.isoformat()},
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(tenant)
        self.session.refresh(subscription)
        log.info("Tenant %s (%s) signed up with trial until %s", tenant.id, tenant.slug, subscription.cycle_end)
        return tenant, subscription
