from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlmodel import Session, select

from app.core.logging_setup import get_logger
from app.models.billing import Plan, PlanType
from app.services.billing_errors import PlanNotFound, SeatCountOutOfRange

log = get_logger("plans")

# code, name, net price (cents), advisors, ceiling, extra advisor (cents), days, type, valuator, tracker, trial, public
DEFAULT_PLANS = [
    ("trial", "Trial", 0, 0, None, None, 7, PlanType.TRIAL, True, True, True, False),
    ("tracker", "Tracker", 600000, 0, None, None, 30, PlanType.TRACKER_ONLY, False, True, False, True),
    ("inicial", "Inicial", 1000000, 4, None, None, 30, PlanType.CORE, True, False, False, True),
    ("pro", "Pro", 1800000, 10, None, None, 30, PlanType.CORE, True, False, False, True),
    ("premium", "Premium", 3000000, 20, None, None, 30, PlanType.COMBO, True, True, False, True),
    ("personalizado", "Personalizado", 5000000, 20, 50, 150000, 30, PlanType.COMBO, True, True, False, True),
]


def seat_count_for(plan: Plan, requested: int | None = None, current: int | None = None) -> int:
    """Seat count a plan will run with.

    Standard plans always run with their catalog seat count. Custom plans take the
    requested count, else the count currently in use, else the floor, and the
    result must lie within ``max_advisors..max_advisors_ceiling``.
    """
    if not plan.is_custom:
        return plan.max_advisors
    seats = requested if requested is not None else current
    if seats is None:
        seats = plan.max_advisors
    ceiling = plan.max_advisors_ceiling if plan.max_advisors_ceiling is not None else plan.max_advisors
    if seats < plan.max_advisors or seats > ceiling:
        raise SeatCountOutOfRange(seats, plan.max_advisors, ceiling)
    return seats


def effective_price_cents(plan: Plan, seat_count: int | None = None) -> int:
    if not plan.is_custom:
        return plan.price_net_cents
    seats = plan.max_advisors if seat_count is None else seat_count
    extra = max(0, seats - plan.max_advisors)
    return plan.price_net_cents + extra * (plan.extra_advisor_price_cents or 0)


class PlanRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_plan(self, plan_id: UUID | str, include_inactive: bool = False) -> Plan:
        """Raises ``PlanNotFound`` for unknown ids, and for retired plans unless
        ``include_inactive`` (a tenant may still be running on a retired plan)."""
        try:
            plan_uuid = UUID(str(plan_id))
        except ValueError as exc:
            raise PlanNotFound(plan_id) from exc
        plan = self.session.get(Plan, plan_uuid)
        if not plan or not (plan.is_active or include_inactive):
            raise PlanNotFound(plan_id)
        return plan

    def get_by_code(self, code: str) -> Plan | None:
        return self.session.exec(select(Plan).where(Plan.code == code)).first()

    def get_trial_plan(self) -> Plan:
        plan = self.session.exec(
            select(Plan).where(Plan.is_trial.is_(True), Plan.is_active.is_(True)).order_by(Plan.created_at)
        ).first()
        if not plan:
            raise PlanNotFound("trial")
        return plan

    def list_plans(self, include_hidden: bool = False) -> Iterable[Plan]:
        statement = select(Plan).where(Plan.is_active.is_(True))
        if not include_hidden:
            statement = statement.where(Plan.is_public.is_(True))
        return self.session.exec(statement.order_by(Plan.max_advisors, Plan.price_net_cents)).all()

    def ensure_default_plans(self, currency: str = "ARS") -> list[Plan]:
        """Idempotently create the default catalog."""
        existing = {p.code: p for p in self.session.exec(select(Plan)).all()}
        created: list[Plan] = []
        for (
            code,
            name,
            price,
            advisors,
            ceiling,
            extra,
            days,
            plan_type,
            valuator,
            tracker,
            trial,
            public,
        ) in DEFAULT_PLANS:
            if code in existing:
                continue
            plan = Plan(
                code=code,
                name=name,
                price_net_cents=price,
                currency=currency,
                max_advisors=advisors,
                max_advisors_ceiling=ceiling,
                extra_advisor_price_cents=extra,
                duration_days=days,
                plan_type=plan_type.value,
                includes_valuator=valuator,
                includes_tracker=tracker,
                is_trial=trial,
                is_public=public,
            )
            self.session.add(plan)
            created.append(plan)
        if created:
            self.session.commit()
            for p in created:
                self.session.refresh(p)
            log.info("Seeded %d default plans: %s", len(created), ", ".join(p.code for p in created))
        return list(self.list_plans(include_hidden=True))
