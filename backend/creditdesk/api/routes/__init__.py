from . import coupons, health, users, wallet

__all__ = [
    "coupons",
    "health",
    "users",
    "wallet",
]
