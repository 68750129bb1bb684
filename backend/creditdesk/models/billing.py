from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlmodel import Field, Relationship, SQLModel

from creditdesk.models.base import TimestampedModel, UUIDModel, utcnow


class InvoiceSequence(SQLModel, table=True):
    """One row per allocated invoice number; the autoincrement id is the counter."""

    __tablename__ = "invoice_sequence"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class Invoice(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "invoices"

    invoice_number: str = Field(unique=True, index=True, max_length=32)
    user_id: UUID = Field(foreign_key="users.id", index=True)

    amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    vat_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    vat_rate: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=4)
    discount_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    price_before_discount: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)
    total: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    currency: str = Field(default="EUR", max_length=16)

    payment_method: str = Field(default="manual", max_length=64)
    payment_reference: str | None = Field(default=None, unique=True, index=True, max_length=128)
    payment_status: str | None = Field(default=None, max_length=32)
    receipt_url: str | None = Field(default=None)

    is_reverse_charge: bool = Field(default=False)
    vat_note: str = Field(default="")
    coupon_code: str | None = Field(default=None, max_length=64)
    status: str = Field(default="Completed", max_length=32)
    issued_at: datetime = Field(default_factory=utcnow, index=True)

    # Billing address snapshot
    billing_name: str | None = Field(default=None)
    billing_street: str | None = Field(default=None)
    billing_postal_code: str | None = Field(default=None, max_length=32)
    billing_city: str | None = Field(default=None)
    billing_country_code: str | None = Field(default=None, max_length=2)
    billing_country_name: str | None = Field(default=None)
    billing_company_name: str | None = Field(default=None)
    billing_vat_number: str | None = Field(default=None, max_length=32)
    billing_address: str | None = Field(default=None)

    credit_lines: List["CreditLine"] = Relationship(
        back_populates="invoice",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "CreditLine.added_at"},
    )

    @property
    def total_credits(self) -> int:
        return sum(line.credits for line in self.credit_lines)

    @property
    def billing_info(self) -> dict[str, str | None]:
        return {
            "name": self.billing_name,
            "street": self.billing_street,
            "postal_code": self.billing_postal_code,
            "city": self.billing_city,
            "country": self.billing_country_code,
            "country_name": self.billing_country_name,
            "company_name": self.billing_company_name,
            "vat_number": self.billing_vat_number,
            "address": self.billing_address,
        }


class CreditLine(UUIDModel, table=True):
    __tablename__ = "credit_lines"

    invoice_id: UUID = Field(foreign_key="invoices.id", index=True)
    credits: int
    amount: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)
    added_at: datetime = Field(default_factory=utcnow, nullable=False)
    expiry_at: datetime = Field(nullable=False)
    reason: str = Field(default="")
    is_manual: bool = Field(default=False)

    invoice: Invoice = Relationship(back_populates="credit_lines")
