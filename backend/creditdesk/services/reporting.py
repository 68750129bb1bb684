from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List
from uuid import UUID

from sqlmodel import Session, func, select

from creditdesk.models.base import utcnow
from creditdesk.models.billing import CreditLine, Invoice
from creditdesk.models.user import User
from creditdesk.models.wallet import Wallet
from creditdesk.schemas.reporting import (
    CreditsStats,
    CustomerCreditsRow,
    OrderPeriod,
    OrderRow,
    OrderStats,
)

EXPIRING_WINDOW = timedelta(days=30)


def period_bounds(period: OrderPeriod, now: datetime) -> tuple[datetime, datetime]:
    """Return the inclusive [start, end] window of an order-stats period. Weeks start on Monday."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    this_monday = midnight - timedelta(days=midnight.weekday())

    if period == OrderPeriod.THIS_WEEK:
        return this_monday, now
    if period == OrderPeriod.LAST_WEEK:
        return this_monday - timedelta(days=7), this_monday - timedelta(microseconds=1)

    first_of_month = midnight.replace(day=1)
    last_month_end = first_of_month - timedelta(microseconds=1)
    return last_month_end.replace(day=1, hour=0, minute=0, second=0, microsecond=0), last_month_end


def _percent(used: int, total: int) -> int:
    if total <= 0:
        return 0
    return int((Decimal(used) * 100 / Decimal(total)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _money(value: Decimal) -> str:
    return f"{Decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}"


@dataclass
class _CustomerCredits:
    user: User
    wallet: Wallet
    expiries: List[datetime]
    company: str

    @property
    def last_expiry(self) -> datetime | None:
        return max(self.expiries, default=None)


class ReportingService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _customers(self) -> List[_CustomerCredits]:
        pairs = self.session.exec(
            select(User, Wallet).join(Wallet, Wallet.user_id == User.id).order_by(User.created_at)
        ).all()

        expiries: Dict[UUID, List[datetime]] = {}
        expiry_rows = self.session.exec(
            select(Invoice.user_id, CreditLine.expiry_at)
            .join(CreditLine, CreditLine.invoice_id == Invoice.id)
            .where(CreditLine.credits > 0)
        ).all()
        for user_id, expiry_at in expiry_rows:
            expiries.setdefault(user_id, []).append(expiry_at)

        companies: Dict[UUID, str] = {}
        for user_id, company in self.session.exec(
            select(Invoice.user_id, Invoice.billing_company_name).order_by(Invoice.issued_at.desc())
        ).all():
            companies.setdefault(user_id, company or "")

        return [
            _CustomerCredits(
                user=user,
                wallet=wallet,
                expiries=expiries.get(user.id, []),
                company=companies.get(user.id, ""),
            )
            for user, wallet in pairs
            # Users who never held credits are not customers yet.
            if not (wallet.balance == 0 and wallet.total_purchased == 0)
        ]

    def customers_credits(self) -> List[CustomerCreditsRow]:
        rows: List[CustomerCreditsRow] = []
        for entry in self._customers():
            total = entry.wallet.total_purchased
            remaining = entry.wallet.balance
            used = max(total - remaining, 0)
            percent = _percent(used, total)
            last_expiry = entry.last_expiry
            rows.append(
                CustomerCreditsRow(
                    id=entry.user.id,
                    customer=entry.user.full_name,
                    email=entry.user.email,
                    company=entry.company,
                    credits_usage=f"{used} / {total} ({percent}%)",
                    usage_percent=percent,
                    total_purchased=total,
                    remaining=remaining,
                    expiry_date=last_expiry.date() if last_expiry else None,
                    status="Active" if remaining > 0 else "Inactive",
                )
            )
        return rows

    def credits_stats(self, *, now: datetime | None = None) -> CreditsStats:
        now = now or utcnow()
        customers = self._customers()
        expiring_soon = 0
        expired = 0
        for entry in customers:
            if not entry.expiries:
                continue
            if entry.last_expiry < now:
                expired += 1
                continue
            nearest = min(expiry for expiry in entry.expiries if expiry >= now)
            if nearest - now <= EXPIRING_WINDOW:
                expiring_soon += 1
        return CreditsStats(
            total_active_credits=sum(entry.wallet.balance for entry in customers),
            expiring_soon=expiring_soon,
            expired_credits=expired,
            total_customers=len(customers),
        )

    def orders(self) -> List[OrderRow]:
        invoices = self.session.exec(
            select(Invoice, User).join(User, User.id == Invoice.user_id).order_by(Invoice.issued_at.desc())
        ).all()
        rows: List[OrderRow] = []
        for position, (invoice, user) in enumerate(invoices, start=1):
            rows.append(
                OrderRow(
                    id=invoice.id,
                    order_id=f"ORD-{position:03d}",
                    invoice_number=invoice.invoice_number,
                    customer=user.full_name,
                    email=user.email,
                    company=invoice.billing_company_name or "",
                    amount=f"{Decimal(invoice.total).quantize(Decimal('1'), rounding=ROUND_HALF_UP)}",
                    currency=invoice.currency,
                    credits=invoice.total_credits,
                    status=invoice.status,
                    date=invoice.issued_at.date() if invoice.issued_at else None,
                )
            )
        return rows

    def order_stats(self, period: OrderPeriod = OrderPeriod.THIS_WEEK, *, now: datetime | None = None) -> OrderStats:
        now = now or utcnow()
        start, end = period_bounds(period, now)
        count, revenue = self.session.exec(
            select(func.count(Invoice.id), func.coalesce(func.sum(Invoice.total), 0))
            .where(Invoice.issued_at >= start)
            .where(Invoice.issued_at <= end)
        ).one()
        revenue = Decimal(str(revenue or 0))
        average = revenue / count if count else Decimal("0")
        return OrderStats(
            total_orders=int(count or 0),
            total_revenue=_money(revenue),
            avg_order_value=_money(average),
            period=period,
        )
