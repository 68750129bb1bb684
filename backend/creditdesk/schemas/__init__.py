from creditdesk.schemas import billing, common, coupon, reporting, user, wallet

__all__ = [
    "billing",
    "common",
    "coupon",
    "reporting",
    "user",
    "wallet",
]
