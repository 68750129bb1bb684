from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import EmailStr, Field

from creditdesk.schemas.common import CamelModel, IDModel, Timestamped
from creditdesk.schemas.wallet import WalletRead


class CreditLineRead(CamelModel):
    credits: int
    amount: Decimal | None = None
    added_at: datetime
    expiry_at: datetime
    reason: str
    is_manual: bool


class BillingSnapshot(CamelModel):
    name: str | None = None
    street: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = None
    country_name: str | None = None
    company_name: str | None = None
    vat_number: str | None = None
    address: str | None = None


class InvoiceRead(IDModel, Timestamped):
    invoice_number: str
    user_id: UUID
    credit_lines: list[CreditLineRead]
    amount: Decimal
    vat_amount: Decimal
    vat_rate: Decimal
    discount_amount: Decimal
    price_before_discount: Decimal | None = None
    total: Decimal
    currency: str
    payment_method: str
    payment_reference: str | None = None
    payment_status: str | None = None
    receipt_url: str | None = None
    is_reverse_charge: bool
    vat_note: str
    coupon_code: str | None = None
    status: str
    issued_at: datetime
    billing_info: BillingSnapshot


class CreditAdjustmentResponse(CamelModel):
    message: str
    wallet: WalletRead
    invoice: InvoiceRead


class ManualOrderRequest(CamelModel):
    customer_name: str | None = None
    email: EmailStr
    company_name: str | None = None
    vat_number: str | None = None
    address: str | None = None
    country: str | None = None
    amount: Decimal = Field(gt=0)
    credits: int = Field(gt=0)


class ManualOrderResponse(CamelModel):
    success: bool = True
    message: str = "Manual order created successfully."
    order: InvoiceRead
    wallet: WalletRead
