from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, text
from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel, VersionedModel


class PlanType(str, Enum):
    CORE = "core"
    COMBO = "combo"
    TRACKER_ONLY = "tracker_only"
    TRIAL = "trial"


class InvoiceKind(str, Enum):
    UPGRADE_PRORATION = "upgrade_proration"
    RENEWAL = "renewal"
    PURCHASE = "purchase"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ChangeClassification(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    NO_CHANGE = "no_change"


class BillingState(str, Enum):
    NO_PLAN = "no_plan"
    ACTIVE_TRIAL = "active_trial"
    TRIAL_EXPIRED = "trial_expired"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    SUSPENDED = "suspended"


class Plan(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "plans"

    code: str = Field(unique=True, index=True)
    name: str
    price_net_cents: int
    currency: str = Field(default="ARS", max_length=3)
    # Seat count for standard plans; seat floor for custom plans
    max_advisors: int = Field(default=0)
    max_advisors_ceiling: int | None = Field(default=None)
    extra_advisor_price_cents: int | None = Field(default=None)
    duration_days: int = Field(default=30)
    plan_type: str = Field(default=PlanType.CORE.value)
    includes_valuator: bool = Field(default=True)
    includes_tracker: bool = Field(default=False)
    is_trial: bool = Field(default=False)
    is_public: bool = Field(default=True)
    is_active: bool = Field(default=True)

    @property
    def is_custom(self) -> bool:
        return self.extra_advisor_price_cents is not None


class Subscription(UUIDModel, TimestampedModel, VersionedModel, table=True):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_active_tenant",
            "tenant_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    tenant_id: UUID = Field(foreign_key="tenants.id", index=True)
    plan_id: UUID = Field(foreign_key="plans.id")
    cycle_start: datetime
    cycle_end: datetime
    is_active: bool = Field(default=True)
    seat_override: int | None = Field(default=None)
    # Deferred change (downgrades, seat reductions)
    scheduled_plan_id: UUID | None = Field(default=None, foreign_key="plans.id")
    scheduled_seat_override: int | None = Field(default=None)
    scheduled_change_at: datetime | None = Field(default=None)
    is_trial: bool = Field(default=False)
    is_suspended: bool = Field(default=False)
    suspension_reason: str | None = Field(default=None)
    suspended_at: datetime | None = Field(default=None)


class Invoice(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "invoices"

    tenant_id: UUID = Field(foreign_key="tenants.id", index=True)
    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    plan_id: UUID = Field(foreign_key="plans.id")
    kind: str
    gateway: str = Field(default="manual")
    external_id: str | None = Field(default=None, index=True)
    checkout_url: str | None = Field(default=None)
    currency: str = Field(default="ARS", max_length=3)
    amount_net_cents: int
    tax_cents: int
    amount_cents: int
    due_date: datetime
    status: str = Field(default=InvoiceStatus.PENDING.value)
    paid_at: datetime | None = Field(default=None)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
