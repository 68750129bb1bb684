from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable
from uuid import UUID

from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from creditdesk.core.config import settings
from creditdesk.core.errors import (
    BillingError,
    ConflictError,
    NotFoundError,
    PaymentError,
    ReconciliationError,
    ValidationError,
)
from creditdesk.core.logging_setup import logger
from creditdesk.models.base import add_one_year, utcnow
from creditdesk.models.billing import CreditLine, Invoice, InvoiceSequence
from creditdesk.models.coupon import Coupon
from creditdesk.models.user import User
from creditdesk.models.wallet import Wallet
from creditdesk.schemas.billing import ManualOrderRequest
from creditdesk.schemas.wallet import AddFundsRequest, BillingInfo, PaymentMode
from creditdesk.services.coupon import CouponService
from creditdesk.services.payments import PaymentGateway, PaymentResult, external_payment
from creditdesk.services.vat import VatDetermination, VatService, currency_for_country, normalize_vat_number
from creditdesk.services.wallet import WalletService, to_minor_units

CENT = Decimal("0.01")
REQUIRED_BILLING_FIELDS = ("name", "street", "postal_code", "country")

TOPUP_REASON = "Wallet top-up purchase"
MANUAL_ADD_REASON = "Manual credit addition"
MANUAL_REMOVE_REASON = "Manual credit deduction"
MANUAL_ORDER_REASON = "Manual order placement by admin"


def quantize_money(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class BillingTotals:
    amount: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    discount_amount: Decimal
    total: Decimal


def compute_totals(amount: Decimal, vat_rate: Decimal, discount_amount: Decimal = Decimal("0")) -> BillingTotals:
    """total = amount + amount * vat_rate - discount, each money value rounded half-up to cents."""
    subtotal = quantize_money(amount)
    discount = quantize_money(discount_amount or 0)
    vat_amount = quantize_money(subtotal * Decimal(vat_rate))
    return BillingTotals(
        amount=subtotal,
        vat_rate=Decimal(vat_rate),
        vat_amount=vat_amount,
        discount_amount=discount,
        total=quantize_money(subtotal + vat_amount - discount),
    )


@dataclass
class TopUpOutcome:
    balance: int
    payment: PaymentResult
    invoice: Invoice
    user: User
    replayed: bool = False


class BillingService:
    def __init__(self, session: Session, gateway: PaymentGateway, vat_service: VatService) -> None:
        self.session = session
        self.gateway = gateway
        self.vat_service = vat_service
        self.wallets = WalletService(session, gateway)
        self.coupons = CouponService(session)

    # Invoices -------------------------------------------------------------
    def next_invoice_number(self, prefix: str | None = None) -> str:
        """Allocate a number from the sequence table; ids are never handed out twice."""
        sequence = InvoiceSequence()
        self.session.add(sequence)
        self.session.flush()
        return f"{prefix or settings.invoice_number_prefix}-{sequence.created_at:%Y}-{sequence.id:06d}"

    def list_invoices(self, user_id: UUID | None = None) -> Iterable[Invoice]:
        statement = select(Invoice).order_by(Invoice.issued_at.desc())
        if user_id is not None:
            statement = statement.where(Invoice.user_id == user_id)
        return self.session.exec(statement).all()

    def get_invoice(self, invoice_id: str | UUID) -> Invoice | None:
        return self.session.get(Invoice, UUID(str(invoice_id)))

    def require_invoice(self, invoice_id: str | UUID) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if not invoice:
            raise NotFoundError("Order not found")
        return invoice

    def delete_invoice(self, invoice: Invoice) -> None:
        # The payment reference is the only guard against crediting a charge twice.
        if invoice.payment_reference:
            raise ConflictError(
                "Paid invoices cannot be deleted",
                details={"paymentReference": invoice.payment_reference},
            )
        self.session.delete(invoice)
        self.session.commit()
        logger.info("Invoice deleted invoice=%s user=%s", invoice.invoice_number, invoice.user_id)

    def find_by_payment_reference(self, reference: str | None) -> Invoice | None:
        if not reference:
            return None
        return self.session.exec(select(Invoice).where(Invoice.payment_reference == reference)).first()

    def _add_credit_line(
        self,
        invoice: Invoice,
        *,
        credits: int,
        reason: str,
        is_manual: bool,
        added_at: datetime,
        expiry_at: datetime,
        amount: Decimal | None = None,
    ) -> None:
        self.session.add(
            CreditLine(
                invoice_id=invoice.id,
                credits=credits,
                amount=quantize_money(amount) if amount is not None else None,
                added_at=added_at,
                expiry_at=expiry_at,
                reason=reason,
                is_manual=is_manual,
            )
        )

    def _require_user_and_wallet(self, user_id: UUID) -> tuple[User, Wallet]:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user, self.wallets.require_wallet(user_id)

    def _commit_with_refresh(self, *instances: object) -> None:
        self.session.commit()
        for instance in instances:
            self.session.refresh(instance)

    # Wallet top-up --------------------------------------------------------
    def add_funds(self, payload: AddFundsRequest) -> TopUpOutcome:
        billing = payload.billing_info or BillingInfo()
        for field in REQUIRED_BILLING_FIELDS:
            if not getattr(billing, field):
                raise ValidationError(
                    f'Billing field "{to_camel(field)}" is required.',
                    details={"field": to_camel(field)},
                )

        user, wallet = self._require_user_and_wallet(payload.user_id)

        replay = self._replayed_outcome(payload.payment_intent_id, user)
        if replay:
            return replay

        raw_country = billing.country or user.country
        vat = self.vat_service.determine(raw_country, billing.vat_number, strict=False)
        totals = compute_totals(payload.amount, vat.vat_rate, payload.discount_amount)
        if totals.total < 0:
            raise ValidationError("Discount cannot exceed the order total")

        credits_total = sum(package.credits for package in payload.credits)
        coupon = self.coupons.get_by_code(payload.coupon.code) if payload.coupon else None
        if coupon:
            self.coupons.ensure_redeemable(coupon, user)

        currency = currency_for_country(raw_country)
        logger.info(
            "Top-up requested user=%s credits=%s country=%s vat_rate=%s total=%s %s",
            user.id,
            credits_total,
            vat.country_code,
            vat.vat_rate,
            totals.total,
            currency,
        )
        payment = self._collect_payment(
            payload,
            user=user,
            wallet=wallet,
            vat=vat,
            totals=totals,
            credits_total=credits_total,
            currency=currency,
        )

        replay = self._replayed_outcome(payment.id, user)
        if replay:
            return replay

        try:
            invoice = self._record_topup(
                payload,
                user=user,
                billing=billing,
                raw_country=raw_country,
                vat=vat,
                totals=totals,
                credits_total=credits_total,
                payment=payment,
                coupon=coupon,
            )
            self._commit_with_refresh(wallet, invoice)
        except Exception as exc:
            self.session.rollback()
            if isinstance(exc, IntegrityError):
                # A concurrent request recorded the same payment first.
                replay = self._replayed_outcome(payment.id, user)
                if replay:
                    return replay
            logger.exception(
                "RECONCILIATION REQUIRED: payment succeeded but top-up was not recorded "
                "user=%s payment=%s amount=%s %s credits=%s",
                user.id,
                payment.id,
                payment.amount,
                payment.currency,
                credits_total,
            )
            raise ReconciliationError(details={"paymentReference": payment.id}) from exc

        logger.info(
            "Top-up recorded user=%s invoice=%s credits=%s balance=%s",
            user.id,
            invoice.invoice_number,
            credits_total,
            wallet.balance,
        )
        return TopUpOutcome(balance=wallet.balance, payment=payment, invoice=invoice, user=user)

    def _collect_payment(
        self,
        payload: AddFundsRequest,
        *,
        user: User,
        wallet: Wallet,
        vat: VatDetermination,
        totals: BillingTotals,
        credits_total: int,
        currency: str,
    ) -> PaymentResult:
        minor_amount = to_minor_units(totals.total)

        if payload.payment_mode in (PaymentMode.LATEST_CARD, PaymentMode.PRIMARY_CARD):
            card = self.wallets.select_card(wallet, latest=payload.payment_mode == PaymentMode.LATEST_CARD)
            if not card or not wallet.stripe_customer_id:
                raise ValidationError("No stored card available for this payment")
            description = (
                f"Purchased {credits_total} credits for {payload.currency_symbol} {totals.total:.2f} (incl. VAT)"
            )
            metadata = {
                "userId": str(user.id),
                "email": user.email,
                "creditsPurchased": json.dumps([package.credits for package in payload.credits]),
                "purpose": "wallet_topup",
                "vatRate": str(vat.vat_rate),
                "reverseCharge": str(vat.is_reverse_charge).lower(),
                "countryCode": vat.country_code or "",
                "vatNumber": payload.billing_info.vat_number or "none",
                "totalCharged": str(totals.total),
            }
            result = self.gateway.charge_off_session(
                customer_id=wallet.stripe_customer_id,
                payment_method_id=card.stripe_card_id,
                amount=minor_amount,
                currency=currency,
                description=description,
                metadata=metadata,
                idempotency_key=payload.idempotency_key,
            )
            if not result.succeeded:
                logger.warning("Charge not succeeded user=%s payment=%s status=%s", user.id, result.id, result.status)
                raise PaymentError("Stripe payment failed", details={"status": result.status})
            result.method = card.brand
            return result

        if payload.payment_intent_id:
            result = self.gateway.retrieve_payment_intent(payload.payment_intent_id)
            if not result.succeeded:
                raise PaymentError("Payment has not succeeded", details={"status": result.status})
            if result.amount != minor_amount:
                logger.warning(
                    "Payment amount mismatch user=%s payment=%s paid=%s expected=%s",
                    user.id,
                    result.id,
                    result.amount,
                    minor_amount,
                )
                raise PaymentError("Payment amount does not match the order total")
            result.method = payload.local_payment_method or "Stripe Element"
            return result

        return external_payment(amount=minor_amount, currency=currency, method=payload.local_payment_method)

    def _record_topup(
        self,
        payload: AddFundsRequest,
        *,
        user: User,
        billing: BillingInfo,
        raw_country: str | None,
        vat: VatDetermination,
        totals: BillingTotals,
        credits_total: int,
        payment: PaymentResult,
        coupon: Coupon | None,
    ) -> Invoice:
        self.wallets.credit(user.id, credits_total)
        if coupon:
            self.coupons.record_redemption(coupon, user)

        now = utcnow()
        invoice = Invoice(
            invoice_number=self.next_invoice_number(),
            user_id=user.id,
            amount=totals.amount,
            vat_amount=totals.vat_amount,
            vat_rate=totals.vat_rate,
            discount_amount=totals.discount_amount,
            price_before_discount=payload.price_before_discount,
            total=totals.total,
            currency=payload.currency_symbol or "EUR",
            payment_method=payment.method or "card",
            payment_reference=payment.id,
            payment_status=payment.status,
            receipt_url=payment.receipt_url,
            is_reverse_charge=vat.is_reverse_charge,
            vat_note=vat.vat_note,
            coupon_code=coupon.code if coupon else None,
            issued_at=now,
            billing_name=billing.name,
            billing_street=billing.street,
            billing_postal_code=billing.postal_code,
            billing_city=billing.city,
            billing_country_code=vat.country_code,
            billing_country_name=raw_country,
            billing_company_name=billing.company_name or "",
            billing_vat_number=normalize_vat_number(billing.vat_number),
        )
        self.session.add(invoice)
        for package in payload.credits:
            self._add_credit_line(
                invoice,
                credits=package.credits,
                amount=package.amount,
                reason=TOPUP_REASON,
                is_manual=False,
                added_at=now,
                expiry_at=add_one_year(now),
            )
        return invoice

    def _replayed_outcome(self, reference: str | None, user: User) -> TopUpOutcome | None:
        invoice = self.find_by_payment_reference(reference)
        if not invoice:
            return None
        if invoice.user_id != user.id:
            raise PaymentError("Payment reference belongs to another account")
        wallet = self.wallets.require_wallet(user.id)
        logger.info("Top-up replay ignored user=%s payment=%s invoice=%s", user.id, reference, invoice.invoice_number)
        payment = PaymentResult(
            id=invoice.payment_reference,
            amount=to_minor_units(invoice.total),
            currency=currency_for_country(invoice.billing_country_name),
            status=invoice.payment_status or "succeeded",
            payment_method=None,
            receipt_url=invoice.receipt_url,
            created=int(invoice.issued_at.timestamp()),
            method=invoice.payment_method,
        )
        return TopUpOutcome(balance=wallet.balance, payment=payment, invoice=invoice, user=user, replayed=True)

    # Admin adjustments ----------------------------------------------------
    def _manual_invoice(self, user_id: UUID, *, credits: int, reason: str, now: datetime, expiry_at: datetime) -> Invoice:
        invoice = Invoice(
            invoice_number=self.next_invoice_number(settings.manual_invoice_number_prefix),
            user_id=user_id,
            payment_method="manual",
            currency="CREDITS",
            issued_at=now,
        )
        self.session.add(invoice)
        self._add_credit_line(
            invoice,
            credits=credits,
            reason=reason,
            is_manual=True,
            added_at=now,
            expiry_at=expiry_at,
        )
        return invoice

    def add_credits(self, user_id: UUID, credits: int, reason: str | None = None) -> tuple[Wallet, Invoice]:
        if not credits or credits <= 0:
            raise ValidationError("userId and a positive credits amount are required")
        self.wallets.credit(user_id, credits)
        now = utcnow()
        invoice = self._manual_invoice(
            user_id,
            credits=credits,
            reason=reason or MANUAL_ADD_REASON,
            now=now,
            expiry_at=add_one_year(now),
        )
        wallet = self.wallets.require_wallet(user_id)
        self._commit_with_refresh(wallet, invoice)
        logger.info("Credits added manually user=%s credits=%s balance=%s", user_id, credits, wallet.balance)
        return wallet, invoice

    def remove_credits(self, user_id: UUID, credits: int, reason: str | None = None) -> tuple[Wallet, Invoice]:
        if not credits or credits <= 0:
            raise ValidationError("userId and a positive credits amount are required")
        try:
            self.wallets.debit(user_id, credits)
        except BillingError:
            self.session.rollback()
            raise
        now = utcnow()
        invoice = self._manual_invoice(
            user_id,
            credits=-credits,
            reason=reason or MANUAL_REMOVE_REASON,
            now=now,
            expiry_at=now,
        )
        wallet = self.wallets.require_wallet(user_id)
        self._commit_with_refresh(wallet, invoice)
        logger.info("Credits removed manually user=%s credits=%s balance=%s", user_id, credits, wallet.balance)
        return wallet, invoice

    # Manual order ---------------------------------------------------------
    def create_manual_order(self, payload: ManualOrderRequest) -> tuple[Invoice, Wallet]:
        user = self.session.exec(select(User).where(User.email == payload.email.strip().lower())).first()
        if not user:
            raise NotFoundError("Order can only be placed for registered user.")
        wallet = self.wallets.require_wallet(user.id)

        vat = self.vat_service.determine(payload.country, payload.vat_number, strict=False)
        totals = compute_totals(payload.amount, vat.vat_rate)

        self.wallets.credit(user.id, payload.credits)
        now = utcnow()
        invoice = Invoice(
            invoice_number=self.next_invoice_number(),
            user_id=user.id,
            amount=totals.amount,
            vat_amount=totals.vat_amount,
            vat_rate=totals.vat_rate,
            total=totals.total,
            currency="EUR",
            payment_method="manual",
            is_reverse_charge=vat.is_reverse_charge,
            vat_note=vat.vat_note,
            issued_at=now,
            billing_name=payload.customer_name,
            billing_company_name=payload.company_name or "",
            billing_vat_number=normalize_vat_number(payload.vat_number),
            billing_address=payload.address or "",
            billing_country_code=vat.country_code,
            billing_country_name=payload.country,
        )
        self.session.add(invoice)
        self._add_credit_line(
            invoice,
            credits=payload.credits,
            amount=payload.amount,
            reason=MANUAL_ORDER_REASON,
            is_manual=True,
            added_at=now,
            expiry_at=add_one_year(now),
        )
        self._commit_with_refresh(wallet, invoice)
        logger.info(
            "Manual order created user=%s invoice=%s credits=%s total=%s",
            user.id,
            invoice.invoice_number,
            payload.credits,
            invoice.total,
        )
        return invoice, wallet
