# noqa: F401 to ensure models are imported for metadata
from creditdesk.models.billing import CreditLine, Invoice, InvoiceSequence
from creditdesk.models.coupon import Coupon, CouponRedemption
from creditdesk.models.user import User
from creditdesk.models.wallet import PaymentCard, Wallet

__all__ = [
    "CreditLine",
    "Invoice",
    "InvoiceSequence",
    "Coupon",
    "CouponRedemption",
    "User",
    "PaymentCard",
    "Wallet",
]
