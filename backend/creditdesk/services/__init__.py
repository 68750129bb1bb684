from creditdesk.services.billing import BillingService
from creditdesk.services.coupon import CouponService
from creditdesk.services.notification import NotificationService
from creditdesk.services.reporting import ReportingService
from creditdesk.services.user import UserService
from creditdesk.services.vat import VatService, ViesClient
from creditdesk.services.wallet import WalletService

__all__ = [
    "BillingService",
    "CouponService",
    "NotificationService",
    "ReportingService",
    "UserService",
    "VatService",
    "ViesClient",
    "WalletService",
]
