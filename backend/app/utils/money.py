from __future__ import annotations

import math
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

ONE_DAY = timedelta(days=1)


def round_cents(value: Decimal) -> int:
    """Round an amount expressed in cents to a whole cent (half-up)."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_rate(amount_cents: int, rate: Decimal) -> int:
    return round_cents(Decimal(amount_cents) * rate)


def ceil_days(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end``, rounded up; negative when ``end`` is in the past."""
    return math.ceil((end - start) / ONE_DAY)


def format_amount(amount_cents: int, currency: str = "ARS") -> str:
    return f"{currency} {Decimal(amount_cents) / 100:,.2f}"
