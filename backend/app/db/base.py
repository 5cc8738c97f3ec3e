# noqa: F401 to ensure models are imported for metadata
from app.models.audit import BillingEvent
from app.models.billing import Invoice, Plan, Subscription
from app.models.tenant import Tenant

__all__ = [
    "BillingEvent",
    "Invoice",
    "Plan",
    "Subscription",
    "Tenant",
]
