from __future__ import annotations

import uuid
from typing import Callable

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine, select

from creditdesk.api.deps import get_notifier, get_payment_gateway, get_vat_registry
from creditdesk.core.errors import PaymentAuthRequired, VatServiceError
from creditdesk.db.session import get_session
from creditdesk.main import app
from creditdesk.models.user import User
from creditdesk.models.wallet import PaymentCard, Wallet
from creditdesk.services.notification import NotificationService
from creditdesk.services.payments import CardDetails, IntentSecret, PaymentResult
from creditdesk.services.vat import VatService

pytestmark = pytest.mark.anyio


class FakeGateway:
    """In-memory stand-in for the card processor."""

    name = "fake"

    def __init__(self) -> None:
        self.charge_status = "succeeded"
        self.auth_required = False
        self.charges: list[dict] = []
        self.intents: dict[str, PaymentResult] = {}
        self.customers: list[str] = []
        self.attached: list[str] = []
        self.detached: list[str] = []
        self.defaults: list[tuple[str, str]] = []

    def create_customer(self, *, email: str, name: str) -> str:
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers.append(customer_id)
        return customer_id

    def create_setup_intent(self, *, customer_id: str) -> IntentSecret:
        return IntentSecret(id="seti_1", client_secret=f"seti_1_secret_{customer_id}")

    def create_payment_intent(self, *, amount: int, currency: str) -> IntentSecret:
        return IntentSecret(id="pi_client", client_secret=f"pi_client_secret_{amount}_{currency}")

    def attach_payment_method(self, *, payment_method_id: str, customer_id: str) -> CardDetails:
        self.attached.append(payment_method_id)
        return CardDetails(id=payment_method_id, brand="visa", last4="4242", exp_month=12, exp_year=2030)

    def detach_payment_method(self, *, payment_method_id: str) -> None:
        self.detached.append(payment_method_id)

    def set_default_payment_method(self, *, customer_id: str, payment_method_id: str) -> None:
        self.defaults.append((customer_id, payment_method_id))

    def charge_off_session(
        self,
        *,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentResult:
        if self.auth_required:
            raise PaymentAuthRequired(payment_intent_id="pi_needs_auth")
        self.charges.append(
            {
                "customer_id": customer_id,
                "payment_method_id": payment_method_id,
                "amount": amount,
                "currency": currency,
                "description": description,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        return PaymentResult(
            id=f"pi_{len(self.charges)}",
            amount=amount,
            currency=currency,
            status=self.charge_status,
            payment_method=payment_method_id,
            receipt_url="https://pay.example.com/receipt",
            created=1_700_000_000,
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentResult:
        return self.intents[payment_intent_id]


class FakeVatRegistry:
    def __init__(self, valid_numbers: tuple[str, ...] = (), fail: bool = False) -> None:
        self.valid_numbers = set(valid_numbers)
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    def is_valid(self, vat_number: str, country_code: str) -> bool:
        self.calls.append((vat_number, country_code))
        if self.fail:
            raise VatServiceError(details={"countryCode": country_code})
        return vat_number in self.valid_numbers


@pytest.fixture()
def db_engine(tmp_path):
    db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False, "timeout": 30})
    SQLModel.metadata.create_all(bind=engine)

    def override_dependency():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_dependency

    yield engine

    app.dependency_overrides.pop(get_session, None)
    engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def vat_registry() -> FakeVatRegistry:
    return FakeVatRegistry(valid_numbers=("NL123456789B01", "DE811907980"))


@pytest.fixture()
def vat_service(vat_registry) -> VatService:
    return VatService(vat_registry)


@pytest.fixture()
def notifier() -> NotificationService:
    return NotificationService(enabled=False)


@pytest.fixture()
def client(db_engine, gateway, vat_registry, notifier) -> TestClient:
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_vat_registry] = lambda: vat_registry
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    for dependency in (get_payment_gateway, get_vat_registry, get_notifier):
        app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    def _make_user(
        *,
        email: str | None = None,
        country: str | None = "Netherlands",
        balance: int = 0,
        total_purchased: int | None = None,
        first_name: str = "Ada",
        last_name: str = "Lovelace",
    ) -> User:
        user = User(
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            first_name=first_name,
            last_name=last_name,
            country=country,
        )
        db_session.add(user)
        db_session.flush()
        db_session.add(
            Wallet(
                user_id=user.id,
                balance=balance,
                total_purchased=balance if total_purchased is None else total_purchased,
            )
        )
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def add_card(db_session) -> Callable[..., PaymentCard]:
    def _add_card(user: User, stripe_card_id: str = "pm_card_visa", *, is_primary: bool = True, **fields) -> PaymentCard:
        wallet = db_session.exec(select(Wallet).where(Wallet.user_id == user.id)).one()
        if not wallet.stripe_customer_id:
            wallet.stripe_customer_id = "cus_existing"
            db_session.add(wallet)
        card = PaymentCard(wallet_id=wallet.id, stripe_card_id=stripe_card_id, is_primary=is_primary, **fields)
        db_session.add(card)
        db_session.commit()
        db_session.refresh(card)
        return card

    return _add_card


@pytest.fixture()
def wallet_of(db_session) -> Callable[[User], Wallet]:
    """Reload a user's wallet, bypassing anything cached in the test session."""

    def _wallet_of(user: User) -> Wallet:
        db_session.expire_all()
        return db_session.exec(select(Wallet).where(Wallet.user_id == user.id)).one()

    return _wallet_of
