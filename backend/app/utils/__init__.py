from app.utils.money import apply_rate, ceil_days, format_amount, round_cents

__all__ = [
    "apply_rate",
    "ceil_days",
    "format_amount",
    "round_cents",
]
