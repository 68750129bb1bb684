from __future__ import annotations

import datetime as dt
from enum import Enum
from uuid import UUID

from creditdesk.schemas.common import CamelModel


class OrderPeriod(str, Enum):
    THIS_WEEK = "this_week"
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"


class CustomerCreditsRow(CamelModel):
    id: UUID
    customer: str
    email: str
    company: str
    credits_usage: str
    usage_percent: int
    total_purchased: int
    remaining: int
    expiry_date: dt.date | None = None
    status: str


class CreditsStats(CamelModel):
    total_active_credits: int
    expiring_soon: int
    expired_credits: int
    total_customers: int


class OrderRow(CamelModel):
    id: UUID
    order_id: str
    invoice_number: str
    customer: str
    email: str
    company: str
    amount: str
    currency: str
    credits: int
    status: str
    date: dt.date | None = None


class OrderStats(CamelModel):
    total_orders: int
    total_revenue: str
    avg_order_value: str
    period: OrderPeriod
