from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import smtplib

from fastapi import status
from sqlmodel import select

from creditdesk.api.deps import get_notifier
from creditdesk.core.config import settings
from creditdesk.main import app
from creditdesk.models.billing import Invoice
from creditdesk.services.notification import EmailConfig, NotificationService

WALLET = f"{settings.api_v1_str}/wallet"


def _billing_info(country: str = "Netherlands", **extra) -> dict:
    info = {
        "name": "Ada Lovelace",
        "street": "Keizersgracht 1",
        "postalCode": "1015AA",
        "city": "Amsterdam",
        "country": country,
    }
    info.update(extra)
    return info


def _add_funds(client, user, **extra):
    payload = {
        "userId": str(user.id),
        "amount": "100",
        "billingInfo": _billing_info(),
        "credits": [{"credits": 100, "amount": "100"}],
    }
    payload.update(extra)
    return client.post(f"{WALLET}/add-funds", json=payload)


def test_add_funds_returns_balance_payment_and_invoice(client, make_user, wallet_of):
    user = make_user(balance=5)

    response = _add_funds(client, user)

    assert response.status_code == status.HTTP_200_OK, response.text
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Funds added successfully to wallet."
    assert data["wallet"] == {"balance": 105}
    assert data["stripePayment"]["id"].startswith("element-")
    assert data["stripePayment"]["amount"] == 12100
    assert data["stripePayment"]["status"] == "succeeded"
    assert data["invoiceNumber"].startswith("INV-")
    assert wallet_of(user).total_purchased == 105


def test_add_funds_sends_receipt_email(client, make_user, monkeypatch):
    sent = []

    class RecordingSMTP:
        def __init__(self, host, port, timeout=None):
            pass

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def starttls(self):
            pass

        def login(self, username, password):
            pass

        def send_message(self, message):
            sent.append(message)

    monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)
    notifier = NotificationService(
        email_config=EmailConfig(
            host="smtp.example.com",
            port=25,
            username=None,
            password=None,
            sender="billing@example.com",
            starttls=False,
        )
    )
    app.dependency_overrides[get_notifier] = lambda: notifier
    user = make_user()

    response = _add_funds(client, user)

    assert response.status_code == status.HTTP_200_OK, response.text
    assert len(sent) == 1
    assert sent[0]["To"] == user.email
    assert response.json()["invoiceNumber"] in sent[0]["Subject"]


def test_add_funds_missing_billing_field(client, make_user):
    user = make_user()

    response = _add_funds(client, user, billingInfo={"name": "Ada", "street": "X", "country": "Netherlands"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"detail": 'Billing field "postalCode" is required.', "field": "postalCode"}


def test_add_funds_rejects_empty_credit_list(client, make_user):
    user = make_user()

    response = _add_funds(client, user, credits=[])

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_add_funds_authentication_required(client, gateway, make_user, add_card):
    user = make_user()
    add_card(user)
    gateway.auth_required = True

    response = _add_funds(client, user, paymentMode="primary_card")

    assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
    body = response.json()
    assert body["code"] == "authentication_required"
    assert body["paymentIntentId"] == "pi_needs_auth"


def test_add_funds_without_card_in_card_mode(client, gateway, make_user):
    user = make_user()

    response = _add_funds(client, user, paymentMode="latest_card")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert gateway.charges == []


def test_check_vat_for_eu_business(client):
    response = client.post(f"{WALLET}/checkVat", json={"country": "Netherlands", "vatNumber": "NL123456789B01"})

    assert response.status_code == status.HTTP_200_OK, response.text
    data = response.json()
    assert Decimal(str(data["vatRate"])) == Decimal("0")
    assert data["isReverseCharge"] is True
    assert data["isValidVat"] is True
    assert data["isEu"] is True
    assert "Article 138" in data["vatNote"]


def test_check_vat_for_eu_consumer_and_export(client):
    consumer = client.post(f"{WALLET}/checkVat", json={"country": "France"}).json()
    export = client.post(f"{WALLET}/checkVat", json={"country": "United States", "vatNumber": "US123"}).json()

    assert Decimal(str(consumer["vatRate"])) == Decimal("0.21")
    assert consumer["isReverseCharge"] is False
    assert Decimal(str(export["vatRate"])) == Decimal("0")
    assert "export of services" in export["vatNote"]


def test_check_vat_requires_country(client):
    response = client.post(f"{WALLET}/checkVat", json={"vatNumber": "NL123456789B01"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Country is required."


def test_check_vat_registry_failure_is_a_server_error(client, vat_registry):
    vat_registry.fail = True

    response = client.post(f"{WALLET}/checkVat", json={"country": "Germany", "vatNumber": "DE811907980"})

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json()["detail"] == "Failed to validate VAT number."


def test_add_funds_survives_registry_failure(client, vat_registry, make_user):
    vat_registry.fail = True
    user = make_user(country="Germany")

    response = _add_funds(client, user, billingInfo=_billing_info("Germany", vatNumber="DE811907980"))

    assert response.status_code == status.HTTP_200_OK, response.text
    assert response.json()["stripePayment"]["amount"] == 12100


def test_validate_vat_number(client):
    response = client.post(f"{WALLET}/validate", json={"vatNumber": "de 811907980", "countryCode": "de"})

    assert response.status_code == status.HTTP_200_OK, response.text
    assert response.json() == {
        "success": True,
        "vatNumber": "DE811907980",
        "countryCode": "DE",
        "isValid": True,
    }


def test_validate_vat_requires_both_fields(client):
    response = client.post(f"{WALLET}/validate", json={"vatNumber": "DE811907980"})

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_admin_add_credits(client, make_user):
    user = make_user(balance=5)

    response = client.post(
        f"{WALLET}/customers/add-credits",
        json={"userId": str(user.id), "credits": 20, "reason": "goodwill"},
    )

    assert response.status_code == status.HTTP_200_OK, response.text
    data = response.json()
    assert data["message"] == "Credits added successfully"
    assert data["wallet"]["balance"] == 25
    assert data["wallet"]["totalPurchased"] == 25
    lines = data["invoice"]["creditLines"]
    assert len(lines) == 1
    assert lines[0]["credits"] == 20
    assert lines[0]["reason"] == "goodwill"
    assert lines[0]["isManual"] is True
    assert data["invoice"]["invoiceNumber"].startswith("MAN-")


def test_admin_add_credits_unknown_wallet(client):
    response = client.post(f"{WALLET}/customers/add-credits", json={"userId": str(uuid4()), "credits": 5})

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Wallet not found"


def test_admin_remove_credits_insufficient(client, make_user, wallet_of):
    user = make_user(balance=10)

    response = client.post(
        f"{WALLET}/customers/remove-credits",
        json={"userId": str(user.id), "credits": 15},
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Insufficient credits"
    assert wallet_of(user).balance == 10


def test_admin_remove_credits(client, make_user):
    user = make_user(balance=10)

    response = client.post(
        f"{WALLET}/customers/remove-credits",
        json={"userId": str(user.id), "credits": 4},
    )

    assert response.status_code == status.HTTP_200_OK, response.text
    data = response.json()
    assert data["wallet"]["balance"] == 6
    assert data["wallet"]["totalPurchased"] == 10
    assert data["invoice"]["creditLines"][0]["credits"] == -4


def test_manual_order_for_unknown_email(client):
    response = client.post(
        f"{WALLET}/orders/manual-order",
        json={"email": "nobody@example.com", "amount": "10", "credits": 10, "country": "Netherlands"},
    )

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Order can only be placed for registered user."


def test_manual_order(client, make_user):
    user = make_user(email="orders@example.com")

    response = client.post(
        f"{WALLET}/orders/manual-order",
        json={
            "customerName": "Orders BV",
            "email": "orders@example.com",
            "companyName": "Orders BV",
            "vatNumber": "NL123456789B01",
            "address": "Damrak 1",
            "country": "Netherlands",
            "amount": "500",
            "credits": 600,
        },
    )

    assert response.status_code == status.HTTP_201_CREATED, response.text
    data = response.json()
    assert data["wallet"]["userId"] == str(user.id)
    assert data["wallet"]["balance"] == 600
    assert data["order"]["isReverseCharge"] is True
    assert Decimal(str(data["order"]["total"])) == Decimal("500.00")
    assert data["order"]["billingInfo"]["companyName"] == "Orders BV"


def test_reporting_views(client, make_user):
    make_user(email="idle@example.com")
    buyer = make_user(email="buyer@example.com", first_name="Grace", last_name="Hopper")
    assert _add_funds(client, buyer).status_code == status.HTTP_200_OK

    customers = client.get(f"{WALLET}/all-customers-credits").json()
    assert [row["email"] for row in customers] == ["buyer@example.com"]
    assert customers[0]["creditsUsage"] == "0 / 100 (0%)"

    stats = client.get(f"{WALLET}/credits-stats").json()
    assert stats["totalCustomers"] == 1
    assert stats["totalActiveCredits"] == 100

    orders = client.get(f"{WALLET}/orders/all").json()
    assert orders[0]["orderId"] == "ORD-001"
    assert orders[0]["customer"] == "Grace Hopper"
    assert orders[0]["amount"] == "121"
    assert orders[0]["credits"] == 100

    order_stats = client.get(f"{WALLET}/orders-stats", params={"period": "this_week"}).json()
    assert order_stats["totalOrders"] == 1
    assert order_stats["totalRevenue"] == "121.00"


def test_orders_stats_rejects_unknown_period(client):
    response = client.get(f"{WALLET}/orders-stats", params={"period": "yesterday"})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_get_and_delete_order(client, make_user):
    user = make_user(balance=1)
    created = client.post(f"{WALLET}/customers/add-credits", json={"userId": str(user.id), "credits": 3}).json()
    invoice_id = created["invoice"]["id"]

    detail = client.get(f"{WALLET}/orders/{invoice_id}")
    assert detail.status_code == status.HTTP_200_OK
    assert detail.json()["currency"] == "CREDITS"

    deleted = client.delete(f"{WALLET}/orders/{invoice_id}")
    assert deleted.status_code == status.HTTP_204_NO_CONTENT
    assert client.get(f"{WALLET}/orders/{invoice_id}").status_code == status.HTTP_404_NOT_FOUND


def test_delete_paid_order_is_refused(client, make_user, db_session):
    user = make_user()
    payment_id = _add_funds(client, user).json()["stripePayment"]["id"]
    invoice = db_session.exec(select(Invoice).where(Invoice.payment_reference == payment_id)).one()

    response = client.delete(f"{WALLET}/orders/{invoice.id}")

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json() == {"detail": "Paid invoices cannot be deleted", "paymentReference": payment_id}
    assert client.get(f"{WALLET}/orders/{invoice.id}").status_code == status.HTTP_200_OK


def test_card_lifecycle(client, gateway, make_user):
    user = make_user()

    first = client.post(f"{WALLET}/add-billing-method", json={"userId": str(user.id), "paymentMethodId": "pm_a"})
    second = client.post(f"{WALLET}/add-billing-method", json={"userId": str(user.id), "paymentMethodId": "pm_b"})
    assert first.status_code == status.HTTP_201_CREATED, first.text
    assert first.json()["card"]["isPrimary"] is True
    assert second.json()["card"]["isPrimary"] is False
    assert gateway.customers == ["cus_1"]

    duplicate = client.post(f"{WALLET}/add-billing-method", json={"userId": str(user.id), "paymentMethodId": "pm_a"})
    assert duplicate.status_code == status.HTTP_409_CONFLICT

    primary = client.put(f"{WALLET}/set-primary-card", json={"userId": str(user.id), "stripeCardId": "pm_b"})
    assert primary.status_code == status.HTTP_200_OK, primary.text
    flags = {card["stripeCardId"]: card["isPrimary"] for card in primary.json()["cards"]}
    assert flags == {"pm_a": False, "pm_b": True}

    removed = client.request(
        "DELETE",
        f"{WALLET}/remove-card",
        json={"userId": str(user.id), "stripeCardId": "pm_b"},
    )
    assert removed.status_code == status.HTTP_200_OK, removed.text
    cards = removed.json()["cards"]
    assert [card["stripeCardId"] for card in cards] == ["pm_a"]
    assert cards[0]["isPrimary"] is True
    assert gateway.detached == ["pm_b"]

    wallet = client.get(f"{WALLET}/by-user/{user.id}").json()
    assert [card["stripeCardId"] for card in wallet["cards"]] == ["pm_a"]
    assert wallet["stripeCustomerId"] == "cus_1"


def test_intents(client, make_user):
    user = make_user()

    setup = client.post(f"{WALLET}/create-setup-intent", json={"userId": str(user.id)})
    assert setup.status_code == status.HTTP_200_OK, setup.text
    assert setup.json()["clientSecret"] == "seti_1_secret_cus_1"

    payment = client.post(f"{WALLET}/create-payment-intent-all-methods", json={"amount": "12.50", "currencyCode": "EUR"})
    assert payment.status_code == status.HTTP_200_OK, payment.text
    assert payment.json() == {"success": True, "clientSecret": "pi_client_secret_1250_eur", "currency": "eur"}


def test_list_wallets_and_missing_wallet(client, make_user):
    make_user()
    make_user()

    assert len(client.get(f"{WALLET}/all").json()) == 2
    assert client.get(f"{WALLET}/by-user/{uuid4()}").status_code == status.HTTP_404_NOT_FOUND
