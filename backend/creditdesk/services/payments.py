from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Protocol

import stripe

from creditdesk.core.errors import PaymentAuthRequired, PaymentError
from creditdesk.core.logging_setup import logger


@dataclass
class PaymentResult:
    id: str
    amount: int
    currency: str
    status: str
    payment_method: str | None
    receipt_url: str | None
    created: int
    method: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CardDetails:
    id: str
    brand: str | None
    last4: str | None
    exp_month: int | None
    exp_year: int | None


@dataclass
class IntentSecret:
    id: str
    client_secret: str


class PaymentGateway(Protocol):
    name: str

    def create_customer(self, *, email: str, name: str) -> str:
        ...

    def create_setup_intent(self, *, customer_id: str) -> IntentSecret:
        ...

    def create_payment_intent(self, *, amount: int, currency: str) -> IntentSecret:
        ...

    def attach_payment_method(self, *, payment_method_id: str, customer_id: str) -> CardDetails:
        ...

    def detach_payment_method(self, *, payment_method_id: str) -> None:
        ...

    def set_default_payment_method(self, *, customer_id: str, payment_method_id: str) -> None:
        ...

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
        ...

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentResult:
        ...


def external_payment(*, amount: int, currency: str, method: str | None) -> PaymentResult:
    """Descriptor for a payment completed by a client-side flow the server did not observe."""
    return PaymentResult(
        id=f"element-{uuid.uuid4().hex[:16]}",
        amount=amount,
        currency=currency,
        status="succeeded",
        payment_method="element",
        receipt_url=None,
        created=int(time.time()),
        method=method or "Stripe Element",
    )


class UnconfiguredGateway:
    """Used when no processor key is configured; every call fails as a payment error."""

    name = "unconfigured"

    def _fail(self, *args: Any, **kwargs: Any) -> Any:
        raise PaymentError("Payment processor not configured")

    create_customer = _fail
    create_setup_intent = _fail
    create_payment_intent = _fail
    attach_payment_method = _fail
    detach_payment_method = _fail
    set_default_payment_method = _fail
    charge_off_session = _fail
    retrieve_payment_intent = _fail


class StripeGateway:
    name = "stripe"

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    @staticmethod
    def _to_result(intent: Any, method: str | None = None) -> PaymentResult:
        receipt_url = None
        latest_charge = getattr(intent, "latest_charge", None)
        if latest_charge is not None and not isinstance(latest_charge, str):
            receipt_url = getattr(latest_charge, "receipt_url", None)
        payment_method = getattr(intent, "payment_method", None)
        if payment_method is not None and not isinstance(payment_method, str):
            payment_method = payment_method.id
        return PaymentResult(
            id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status,
            payment_method=payment_method,
            receipt_url=receipt_url,
            created=intent.created,
            method=method,
        )

    def create_customer(self, *, email: str, name: str) -> str:
        try:
            customer = stripe.Customer.create(api_key=self.api_key, email=email, name=name)
        except stripe.StripeError as exc:
            raise PaymentError("Could not create payment customer") from exc
        return customer.id

    def create_setup_intent(self, *, customer_id: str) -> IntentSecret:
        try:
            intent = stripe.SetupIntent.create(
                api_key=self.api_key,
                customer=customer_id,
                payment_method_types=["card"],
            )
        except stripe.StripeError as exc:
            raise PaymentError("Could not create setup intent") from exc
        return IntentSecret(id=intent.id, client_secret=intent.client_secret)

    def create_payment_intent(self, *, amount: int, currency: str) -> IntentSecret:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=amount,
                currency=currency,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as exc:
            raise PaymentError("Could not create payment intent") from exc
        return IntentSecret(id=intent.id, client_secret=intent.client_secret)

    def attach_payment_method(self, *, payment_method_id: str, customer_id: str) -> CardDetails:
        try:
            method = stripe.PaymentMethod.attach(
                payment_method_id,
                api_key=self.api_key,
                customer=customer_id,
            )
        except stripe.StripeError as exc:
            raise PaymentError("Could not attach payment method") from exc
        card = getattr(method, "card", None)
        return CardDetails(
            id=method.id,
            brand=getattr(card, "brand", None),
            last4=getattr(card, "last4", None),
            exp_month=getattr(card, "exp_month", None),
            exp_year=getattr(card, "exp_year", None),
        )

    def detach_payment_method(self, *, payment_method_id: str) -> None:
        try:
            stripe.PaymentMethod.detach(payment_method_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise PaymentError("Could not detach payment method") from exc

    def set_default_payment_method(self, *, customer_id: str, payment_method_id: str) -> None:
        try:
            stripe.Customer.modify(
                customer_id,
                api_key=self.api_key,
                invoice_settings={"default_payment_method": payment_method_id},
            )
        except stripe.StripeError as exc:
            raise PaymentError("Could not update default payment method") from exc

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
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "customer": customer_id,
            "payment_method": payment_method_id,
            "off_session": True,
            "confirm": True,
            "description": description,
            "metadata": metadata,
            "expand": ["latest_charge"],
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            intent = stripe.PaymentIntent.create(api_key=self.api_key, **params)
        except stripe.CardError as exc:
            if exc.code == "authentication_required":
                error_intent = getattr(getattr(exc, "error", None), "payment_intent", None)
                raise PaymentAuthRequired(payment_intent_id=getattr(error_intent, "id", None)) from exc
            logger.warning("Card declined customer=%s code=%s", customer_id, exc.code)
            raise PaymentError("Card payment was declined") from exc
        except stripe.StripeError as exc:
            logger.error("Stripe charge failed customer=%s amount=%s %s", customer_id, amount, currency)
            raise PaymentError("Stripe payment failed") from exc
        return self._to_result(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentResult:
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment_intent_id,
                api_key=self.api_key,
                expand=["latest_charge"],
            )
        except stripe.StripeError as exc:
            raise PaymentError("Could not verify payment") from exc
        return self._to_result(intent)


def build_gateway(api_key: str | None) -> PaymentGateway:
    if api_key:
        return StripeGateway(api_key)
    return UnconfiguredGateway()
