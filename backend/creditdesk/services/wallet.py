from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from creditdesk.core.errors import ConflictError, InsufficientCreditsError, NotFoundError, ValidationError
from creditdesk.core.logging_setup import logger
from creditdesk.models.base import utcnow
from creditdesk.models.user import User
from creditdesk.models.wallet import PaymentCard, Wallet
from creditdesk.services.payments import IntentSecret, PaymentGateway


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class WalletService:
    def __init__(self, session: Session, gateway: PaymentGateway) -> None:
        self.session = session
        self.gateway = gateway

    def list_wallets(self) -> Iterable[Wallet]:
        return self.session.exec(select(Wallet).order_by(Wallet.created_at)).all()

    def get_wallet(self, user_id: UUID) -> Wallet | None:
        return self.session.exec(select(Wallet).where(Wallet.user_id == user_id)).first()

    def require_wallet(self, user_id: UUID) -> Wallet:
        wallet = self.get_wallet(user_id)
        if not wallet:
            raise NotFoundError("Wallet not found")
        return wallet

    def _require_user(self, user_id: UUID) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    # Balance primitives --------------------------------------------------
    # Both run inside the caller's transaction and never commit.
    def credit(self, user_id: UUID, credits: int, *, count_as_purchase: bool = True) -> None:
        if credits <= 0:
            raise ValidationError("Credits must be a positive number")
        values = {"balance": Wallet.balance + credits, "updated_at": utcnow()}
        if count_as_purchase:
            values["total_purchased"] = Wallet.total_purchased + credits
        result = self.session.connection().execute(
            update(Wallet).where(Wallet.user_id == user_id).values(**values)
        )
        if result.rowcount == 0:
            raise NotFoundError("Wallet not found")

    def debit(self, user_id: UUID, credits: int) -> None:
        if credits <= 0:
            raise ValidationError("Credits must be a positive number")
        result = self.session.connection().execute(
            update(Wallet)
            .where(Wallet.user_id == user_id)
            .where(Wallet.balance >= credits)
            .values(balance=Wallet.balance - credits, updated_at=utcnow())
        )
        if result.rowcount == 0:
            self.require_wallet(user_id)
            raise InsufficientCreditsError()

    # Processor customer and cards ----------------------------------------
    def ensure_customer(self, wallet: Wallet, user: User) -> str:
        if not wallet.stripe_customer_id:
            wallet.stripe_customer_id = self.gateway.create_customer(email=user.email, name=user.full_name)
            self.session.add(wallet)
            self.session.commit()
            self.session.refresh(wallet)
            logger.info("Payment customer created user=%s customer=%s", user.id, wallet.stripe_customer_id)
        return wallet.stripe_customer_id

    def create_setup_intent(self, user_id: UUID) -> IntentSecret:
        user = self._require_user(user_id)
        wallet = self.require_wallet(user_id)
        customer_id = self.ensure_customer(wallet, user)
        return self.gateway.create_setup_intent(customer_id=customer_id)

    def create_payment_intent(self, amount: Decimal, currency_code: str) -> tuple[IntentSecret, str]:
        currency = (currency_code or "eur").lower()
        minor_amount = to_minor_units(amount)
        intent = self.gateway.create_payment_intent(amount=minor_amount, currency=currency)
        logger.info("Payment intent created id=%s amount=%s %s", intent.id, minor_amount, currency)
        return intent, currency

    def add_card(self, user_id: UUID, payment_method_id: str) -> PaymentCard:
        user = self._require_user(user_id)
        wallet = self.require_wallet(user_id)
        if any(card.stripe_card_id == payment_method_id for card in wallet.cards):
            raise ConflictError("Card already added")

        customer_id = self.ensure_customer(wallet, user)
        details = self.gateway.attach_payment_method(payment_method_id=payment_method_id, customer_id=customer_id)
        self.gateway.set_default_payment_method(customer_id=customer_id, payment_method_id=payment_method_id)

        is_first_card = len(wallet.cards) == 0
        card = PaymentCard(
            wallet_id=wallet.id,
            stripe_card_id=details.id,
            brand=details.brand,
            last4=details.last4,
            exp_month=details.exp_month,
            exp_year=details.exp_year,
            is_primary=is_first_card,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def set_primary_card(self, user_id: UUID, stripe_card_id: str) -> Wallet:
        wallet = self.require_wallet(user_id)
        card = next((c for c in wallet.cards if c.stripe_card_id == stripe_card_id), None)
        if not card:
            raise NotFoundError("Card not found")
        for other in wallet.cards:
            other.is_primary = other.id == card.id
            self.session.add(other)
        if wallet.stripe_customer_id:
            self.gateway.set_default_payment_method(
                customer_id=wallet.stripe_customer_id,
                payment_method_id=stripe_card_id,
            )
        self.session.commit()
        self.session.refresh(wallet)
        return wallet

    def remove_card(self, user_id: UUID, stripe_card_id: str) -> Wallet:
        wallet = self.require_wallet(user_id)
        card = next((c for c in wallet.cards if c.stripe_card_id == stripe_card_id), None)
        if not card:
            raise NotFoundError("Card not found")

        self.gateway.detach_payment_method(payment_method_id=stripe_card_id)
        was_primary = card.is_primary
        wallet.cards.remove(card)
        if was_primary and wallet.cards:
            promoted = wallet.cards[0]
            promoted.is_primary = True
            self.session.add(promoted)
            if wallet.stripe_customer_id:
                self.gateway.set_default_payment_method(
                    customer_id=wallet.stripe_customer_id,
                    payment_method_id=promoted.stripe_card_id,
                )
        self.session.add(wallet)
        self.session.commit()
        self.session.refresh(wallet)
        return wallet

    def select_card(self, wallet: Wallet, *, latest: bool) -> PaymentCard | None:
        if latest:
            return max(wallet.cards, key=lambda card: card.created_at, default=None)
        return next((card for card in wallet.cards if card.is_primary), None)
