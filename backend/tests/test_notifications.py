from decimal import Decimal

import smtplib

from creditdesk.services.notification import EmailConfig, NotificationService, TopUpReceipt


class FakeSMTP:
    def __init__(self, host, port, timeout=None):  # noqa: D401
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in = None
        self.sent_messages = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def send_message(self, message):
        self.sent_messages.append(message)


class BrokenSMTP(FakeSMTP):
    def send_message(self, message):
        raise smtplib.SMTPServerDisconnected("gone")


def _receipt(**fields) -> TopUpReceipt:
    data = {
        "email": "ada@example.com",
        "customer_name": "Ada Lovelace",
        "credits": 100,
        "balance": 140,
        "invoice_number": "INV-2026-000042",
        "currency": "EUR",
        "amount": Decimal("100.00"),
        "vat_rate": Decimal("0.21"),
        "vat_amount": Decimal("21.00"),
        "discount_amount": Decimal("0.00"),
        "total": Decimal("121.00"),
        "vat_note": "",
    }
    data.update(fields)
    return TopUpReceipt(**data)


def _service() -> NotificationService:
    return NotificationService(
        email_config=EmailConfig(
            host="smtp.example.com",
            port=587,
            username="mailer",
            password="secret",
            sender="billing@example.com",
            starttls=True,
        )
    )


def test_topup_receipt_is_sent(monkeypatch):
    instances = []

    def factory(host, port, timeout=None):
        smtp = FakeSMTP(host, port, timeout)
        instances.append(smtp)
        return smtp

    monkeypatch.setattr(smtplib, "SMTP", factory)

    assert _service().notify_topup(_receipt()) is True

    smtp = instances[0]
    assert smtp.started_tls is True
    assert smtp.logged_in == ("mailer", "secret")
    message = smtp.sent_messages[0]
    assert message["To"] == "ada@example.com"
    assert "INV-2026-000042" in message["Subject"]
    html = message.get_body(preferencelist=("html",)).get_content()
    assert "121.00" in html
    assert "140" in html


def test_reverse_charge_note_is_rendered(monkeypatch):
    instances = []

    def factory(host, port, timeout=None):
        instances.append(FakeSMTP(host, port, timeout))
        return instances[-1]

    monkeypatch.setattr(smtplib, "SMTP", factory)

    _service().notify_topup(
        _receipt(
            vat_rate=Decimal("0"),
            vat_amount=Decimal("0.00"),
            total=Decimal("100.00"),
            vat_note="VAT reverse charged",
        )
    )

    html = instances[0].sent_messages[0].get_body(preferencelist=("html",)).get_content()
    assert "VAT reverse charged" in html


def test_delivery_failure_is_not_raised(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", BrokenSMTP)

    assert _service().notify_topup(_receipt()) is False


def test_disabled_notifications_skip_smtp(monkeypatch):
    def explode(*args, **kwargs):
        raise AssertionError("SMTP should not be used")

    monkeypatch.setattr(smtplib, "SMTP", explode)

    assert NotificationService(enabled=False).notify_topup(_receipt()) is False
