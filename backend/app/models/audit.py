from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class BillingEvent(UUIDModel, TimestampedModel, table=True):
    """Append-only trail of subscription changes, renewals and payments."""

    __tablename__ = "billing_events"

    tenant_id: UUID = Field(foreign_key="tenants.id", index=True)
    subscription_id: UUID | None = Field(default=None, foreign_key="subscriptions.id", index=True)
    event_type: str = Field(index=True)
    actor: str | None = Field(default=None)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
