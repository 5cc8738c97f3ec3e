from . import billing, health, tenants

__all__ = [
    "billing",
    "health",
    "tenants",
]
