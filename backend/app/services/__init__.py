from app.services.billing import BillingService
from app.services.payments import PaymentService
from app.services.plan_catalog import PlanRepository
from app.services.subscriptions import SubscriptionRepository
from app.services.tenant import TenantService
