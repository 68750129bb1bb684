from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from sqlmodel import Session

from creditdesk.api.deps import get_db, get_notifier, get_payment_gateway, get_vat_service
from creditdesk.core.errors import ValidationError
from creditdesk.core.logging_setup import logger
from creditdesk.models.billing import Invoice
from creditdesk.schemas.billing import (
    CreditAdjustmentResponse,
    InvoiceRead,
    ManualOrderRequest,
    ManualOrderResponse,
)
from creditdesk.schemas.reporting import CreditsStats, CustomerCreditsRow, OrderPeriod, OrderRow, OrderStats
from creditdesk.schemas.wallet import (
    AddCardRequest,
    AddCardResponse,
    AddFundsRequest,
    AddFundsResponse,
    CardListResponse,
    CardRead,
    CardSelection,
    CreditAdjustmentRequest,
    PaymentDescriptor,
    PaymentIntentRequest,
    PaymentIntentResponse,
    SetupIntentRequest,
    SetupIntentResponse,
    VatCheckRequest,
    VatCheckResponse,
    VatValidateRequest,
    VatValidateResponse,
    WalletBalance,
    WalletRead,
)
from creditdesk.services.billing import BillingService
from creditdesk.services.notification import NotificationService, TopUpReceipt
from creditdesk.services.payments import PaymentGateway
from creditdesk.services.reporting import ReportingService
from creditdesk.services.vat import VatService, normalize_vat_number
from creditdesk.services.wallet import WalletService

router = APIRouter(prefix="/wallet", tags=["wallet"])


def _billing(session: Session, gateway: PaymentGateway, vat_service: VatService) -> BillingService:
    return BillingService(session, gateway=gateway, vat_service=vat_service)


def _wallets(session: Session, gateway: PaymentGateway) -> WalletService:
    return WalletService(session, gateway=gateway)


def _invoice_read(invoice: Invoice) -> InvoiceRead:
    return InvoiceRead.model_validate(invoice, from_attributes=True)


# ===============================================================
# Top-up
# ===============================================================
@router.post("/add-funds", response_model=AddFundsResponse)
def add_funds(
    payload: AddFundsRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    vat_service: VatService = Depends(get_vat_service),
    notifier: NotificationService = Depends(get_notifier),
) -> AddFundsResponse:
    outcome = _billing(session, gateway, vat_service).add_funds(payload)
    if not outcome.replayed:
        receipt = TopUpReceipt.build(
            email=outcome.user.email,
            customer_name=outcome.user.full_name,
            invoice=outcome.invoice,
            balance=outcome.balance,
        )
        background_tasks.add_task(notifier.notify_topup, receipt)
    return AddFundsResponse(
        wallet=WalletBalance(balance=outcome.balance),
        stripe_payment=PaymentDescriptor(**outcome.payment.as_dict()),
        invoice_number=outcome.invoice.invoice_number,
    )


# ===============================================================
# VAT
# ===============================================================
@router.post("/checkVat", response_model=VatCheckResponse)
def check_vat(
    payload: VatCheckRequest,
    vat_service: VatService = Depends(get_vat_service),
) -> VatCheckResponse:
    if not payload.country:
        raise ValidationError("Country is required.")
    result = vat_service.determine(payload.country, payload.vat_number)
    logger.info(
        "VAT checked country=%s rate=%s reverse_charge=%s",
        result.country_code,
        result.vat_rate,
        result.is_reverse_charge,
    )
    return VatCheckResponse(
        vat_rate=result.vat_rate,
        is_eu=result.is_eu,
        is_reverse_charge=result.is_reverse_charge,
        is_valid_vat=result.is_valid_vat,
        vat_note=result.vat_note,
    )


@router.post("/validate", response_model=VatValidateResponse)
def validate_vat(
    payload: VatValidateRequest,
    vat_service: VatService = Depends(get_vat_service),
) -> VatValidateResponse:
    vat_number = normalize_vat_number(payload.vat_number)
    country_code = (payload.country_code or "").strip().upper()
    if not vat_number or not country_code:
        raise ValidationError("VAT number and country code are required.")
    is_valid = vat_service.validate_number(vat_number, country_code)
    return VatValidateResponse(vat_number=vat_number, country_code=country_code, is_valid=is_valid)


# ===============================================================
# Admin credit adjustments and manual orders
# ===============================================================
@router.post("/customers/add-credits", response_model=CreditAdjustmentResponse)
def add_credits(
    payload: CreditAdjustmentRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    vat_service: VatService = Depends(get_vat_service),
) -> CreditAdjustmentResponse:
    wallet, invoice = _billing(session, gateway, vat_service).add_credits(
        payload.user_id, payload.credits, payload.reason
    )
    return CreditAdjustmentResponse(
        message="Credits added successfully",
        wallet=WalletRead.model_validate(wallet, from_attributes=True),
        invoice=_invoice_read(invoice),
    )


@router.post("/customers/remove-credits", response_model=CreditAdjustmentResponse)
def remove_credits(
    payload: CreditAdjustmentRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    vat_service: VatService = Depends(get_vat_service),
) -> CreditAdjustmentResponse:
    wallet, invoice = _billing(session, gateway, vat_service).remove_credits(
        payload.user_id, payload.credits, payload.reason
    )
    return CreditAdjustmentResponse(
        message="Credits removed successfully",
        wallet=WalletRead.model_validate(wallet, from_attributes=True),
        invoice=_invoice_read(invoice),
    )


@router.post("/orders/manual-order", response_model=ManualOrderResponse, status_code=status.HTTP_201_CREATED)
def create_manual_order(
    payload: ManualOrderRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    vat_service: VatService = Depends(get_vat_service),
) -> ManualOrderResponse:
    invoice, wallet = _billing(session, gateway, vat_service).create_manual_order(payload)
    return ManualOrderResponse(
        order=_invoice_read(invoice),
        wallet=WalletRead.model_validate(wallet, from_attributes=True),
    )


# ===============================================================
# Reporting
# ===============================================================
@router.get("/all-customers-credits", response_model=List[CustomerCreditsRow])
def all_customers_credits(session: Session = Depends(get_db)) -> List[CustomerCreditsRow]:
    return ReportingService(session).customers_credits()


@router.get("/credits-stats", response_model=CreditsStats)
def credits_stats(session: Session = Depends(get_db)) -> CreditsStats:
    return ReportingService(session).credits_stats()


@router.get("/orders/all", response_model=List[OrderRow])
def all_orders(session: Session = Depends(get_db)) -> List[OrderRow]:
    return ReportingService(session).orders()


@router.get("/orders-stats", response_model=OrderStats)
def orders_stats(
    period: OrderPeriod = OrderPeriod.THIS_WEEK,
    session: Session = Depends(get_db),
) -> OrderStats:
    return ReportingService(session).order_stats(period)


@router.get("/orders/{invoice_id}", response_model=InvoiceRead)
def get_order(
    invoice_id: UUID,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    vat_service: VatService = Depends(get_vat_service),
) -> InvoiceRead:
    invoice = _billing(session, gateway, vat_service).require_invoice(invoice_id)
    return _invoice_read(invoice)


@router.delete("/orders/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    invoice_id: UUID,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    vat_service: VatService = Depends(get_vat_service),
) -> Response:
    service = _billing(session, gateway, vat_service)
    service.delete_invoice(service.require_invoice(invoice_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===============================================================
# Payment cards
# ===============================================================
@router.post("/create-setup-intent", response_model=SetupIntentResponse)
def create_setup_intent(
    payload: SetupIntentRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> SetupIntentResponse:
    intent = _wallets(session, gateway).create_setup_intent(payload.user_id)
    return SetupIntentResponse(client_secret=intent.client_secret)


@router.post("/create-payment-intent-all-methods", response_model=PaymentIntentResponse)
def create_payment_intent(
    payload: PaymentIntentRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentIntentResponse:
    intent, currency = _wallets(session, gateway).create_payment_intent(payload.amount, payload.currency_code)
    return PaymentIntentResponse(client_secret=intent.client_secret, currency=currency)


@router.post("/add-billing-method", response_model=AddCardResponse, status_code=status.HTTP_201_CREATED)
def add_billing_method(
    payload: AddCardRequest,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> AddCardResponse:
    card = _wallets(session, gateway).add_card(payload.user_id, payload.payment_method_id)
    return AddCardResponse(card=CardRead.model_validate(card, from_attributes=True))


@router.put("/set-primary-card", response_model=CardListResponse)
def set_primary_card(
    payload: CardSelection,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> CardListResponse:
    wallet = _wallets(session, gateway).set_primary_card(payload.user_id, payload.stripe_card_id)
    return CardListResponse(
        message="Primary card updated successfully.",
        cards=[CardRead.model_validate(card, from_attributes=True) for card in wallet.cards],
    )


@router.delete("/remove-card", response_model=CardListResponse)
def remove_card(
    payload: CardSelection,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> CardListResponse:
    wallet = _wallets(session, gateway).remove_card(payload.user_id, payload.stripe_card_id)
    return CardListResponse(
        message="Card removed successfully.",
        cards=[CardRead.model_validate(card, from_attributes=True) for card in wallet.cards],
    )


# ===============================================================
# Wallets
# ===============================================================
@router.get("/all", response_model=List[WalletRead])
def list_wallets(
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> List[WalletRead]:
    return [WalletRead.model_validate(wallet, from_attributes=True) for wallet in _wallets(session, gateway).list_wallets()]


@router.get("/by-user/{user_id}", response_model=WalletRead)
def get_wallet_by_user(
    user_id: UUID,
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> WalletRead:
    wallet = _wallets(session, gateway).require_wallet(user_id)
    return WalletRead.model_validate(wallet, from_attributes=True)
