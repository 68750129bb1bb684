from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import Field

from creditdesk.schemas.common import CamelModel


class PaymentMode(str, Enum):
    LATEST_CARD = "latest_card"
    PRIMARY_CARD = "primary_card"
    EXTERNAL = "external"


class BillingInfo(CamelModel):
    name: str | None = None
    street: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = None
    company_name: str | None = None
    vat_number: str | None = None


class CreditPackage(CamelModel):
    credits: int = Field(gt=0)
    amount: Decimal | None = None


class CouponRef(CamelModel):
    code: str | None = None


class AddFundsRequest(CamelModel):
    user_id: UUID
    amount: Decimal = Field(gt=0)
    billing_info: BillingInfo | None = None
    credits: list[CreditPackage] = Field(min_length=1)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    price_before_discount: Decimal | None = None
    currency_symbol: str = "EUR"
    payment_mode: PaymentMode = PaymentMode.EXTERNAL
    local_payment_method: str | None = None
    payment_intent_id: str | None = None
    idempotency_key: str | None = None
    coupon: CouponRef | None = None


class PaymentDescriptor(CamelModel):
    id: str
    amount: int
    currency: str
    status: str
    payment_method: str | None = None
    receipt_url: str | None = None
    created: int
    method: str | None = None


class WalletBalance(CamelModel):
    balance: int


class AddFundsResponse(CamelModel):
    success: bool = True
    message: str = "Funds added successfully to wallet."
    wallet: WalletBalance
    stripe_payment: PaymentDescriptor
    invoice_number: str


class CardRead(CamelModel):
    stripe_card_id: str
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None
    is_primary: bool
    created_at: datetime


class WalletRead(CamelModel):
    id: UUID
    user_id: UUID
    balance: int
    total_purchased: int
    stripe_customer_id: str | None = None
    cards: list[CardRead] = []


class AddCardRequest(CamelModel):
    user_id: UUID
    payment_method_id: str


class AddCardResponse(CamelModel):
    success: bool = True
    message: str = "Billing method added successfully."
    card: CardRead


class CardSelection(CamelModel):
    user_id: UUID
    stripe_card_id: str


class CardListResponse(CamelModel):
    success: bool = True
    message: str
    cards: list[CardRead]


class SetupIntentRequest(CamelModel):
    user_id: UUID


class SetupIntentResponse(CamelModel):
    success: bool = True
    client_secret: str


class PaymentIntentRequest(CamelModel):
    amount: Decimal = Field(gt=0)
    currency_code: str = "eur"


class PaymentIntentResponse(CamelModel):
    success: bool = True
    client_secret: str
    currency: str


class CreditAdjustmentRequest(CamelModel):
    user_id: UUID
    credits: int
    reason: str | None = None


class VatCheckRequest(CamelModel):
    country: str | None = None
    vat_number: str | None = None


class VatCheckResponse(CamelModel):
    success: bool = True
    vat_rate: Decimal
    is_eu: bool
    is_reverse_charge: bool
    is_valid_vat: bool
    vat_note: str


class VatValidateRequest(CamelModel):
    vat_number: str | None = None
    country_code: str | None = None


class VatValidateResponse(CamelModel):
    success: bool = True
    vat_number: str
    country_code: str
    is_valid: bool
