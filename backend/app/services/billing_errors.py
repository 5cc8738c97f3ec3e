from __future__ import annotations

from uuid import UUID


class BillingError(ValueError):
    """Base class for billing failures. ``code`` is the stable kind exposed to clients."""

    code = "billing_error"
    http_status = 400

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.context = context

    def to_detail(self) -> dict[str, object]:
        detail: dict[str, object] = {"error": self.code, "message": str(self)}
        if self.context:
            detail["context"] = {key: str(value) for key, value in self.context.items()}
        return detail


class InvalidCycle(BillingError):
    code = "invalid_cycle"
    http_status = 500


class PlanNotFound(BillingError):
    code = "plan_not_found"
    http_status = 404

    def __init__(self, plan_id: UUID | str) -> None:
        super().__init__(f"Plan {plan_id} not found", plan_id=plan_id)


class SubscriptionNotFound(BillingError):
    code = "subscription_not_found"
    http_status = 404

    def __init__(self, tenant_id: UUID | str) -> None:
        super().__init__(f"Tenant {tenant_id} has no active subscription", tenant_id=tenant_id)


class SeatCountOutOfRange(BillingError):
    code = "seat_count_out_of_range"
    http_status = 422

    def __init__(self, seats: int, floor: int, ceiling: int) -> None:
        super().__init__(
            f"Seat count {seats} outside allowed range {floor}..{ceiling}",
            seats=seats,
            floor=floor,
            ceiling=ceiling,
        )


class QuoteStale(BillingError):
    code = "quote_stale"
    http_status = 409

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"Quote changed since preview (expected {expected}, got {actual})",
            expected=expected,
            actual=actual,
        )


class VersionConflict(BillingError):
    code = "version_conflict"
    http_status = 409

    def __init__(self, subscription_id: UUID | str, expected_version: int) -> None:
        super().__init__(
            f"Subscription {subscription_id} was modified concurrently",
            subscription_id=subscription_id,
            expected_version=expected_version,
        )


class RenewalRequired(BillingError):
    code = "renewal_required"
    http_status = 409

    def __init__(self, tenant_id: UUID | str) -> None:
        super().__init__(
            f"Billing cycle of tenant {tenant_id} has elapsed; purchase a plan to start a new cycle",
            tenant_id=tenant_id,
        )


class CycleInProgress(BillingError):
    code = "cycle_in_progress"
    http_status = 409

    def __init__(self, tenant_id: UUID | str, cycle_end: object) -> None:
        super().__init__(
            f"Billing cycle of tenant {tenant_id} runs until {cycle_end}; use a plan change instead",
            tenant_id=tenant_id,
            cycle_end=cycle_end,
        )
