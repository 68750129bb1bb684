from __future__ import annotations

import smtplib
from dataclasses import dataclass
from decimal import Decimal
from email.message import EmailMessage
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from creditdesk.core.logging_setup import logger
from creditdesk.models.billing import Invoice


@dataclass
class TopUpReceipt:
    email: str
    customer_name: str
    credits: int
    balance: int
    invoice_number: str
    currency: str
    amount: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    vat_note: str
    coupon_code: str | None = None

    @classmethod
    def build(cls, *, email: str, customer_name: str, invoice: Invoice, balance: int) -> "TopUpReceipt":
        return cls(
            email=email,
            customer_name=customer_name,
            credits=invoice.total_credits,
            balance=balance,
            invoice_number=invoice.invoice_number,
            currency=invoice.currency,
            amount=invoice.amount,
            vat_rate=invoice.vat_rate,
            vat_amount=invoice.vat_amount,
            discount_amount=invoice.discount_amount,
            total=invoice.total,
            vat_note=invoice.vat_note,
            coupon_code=invoice.coupon_code,
        )


@dataclass
class EmailConfig:
    host: str
    port: int
    username: str | None
    password: str | None
    sender: str
    starttls: bool


class NotificationService:
    """Customer e-mails sent after billing events. Delivery is best effort."""

    def __init__(
        self,
        email_config: Optional[EmailConfig] = None,
        template_root: Path | None = None,
        enabled: bool = True,
    ) -> None:
        self.email_config = email_config
        self.enabled = enabled
        self.template_root = template_root or Path(__file__).resolve().parent.parent / "templates"
        self.template_env = Environment(
            loader=FileSystemLoader(self.template_root),
            autoescape=select_autoescape(["html", "xml"]),
        )

    @classmethod
    def from_settings(cls, settings) -> "NotificationService":
        email_config = None
        if settings.smtp_host and settings.smtp_sender:
            email_config = EmailConfig(
                host=settings.smtp_host,
                port=int(settings.smtp_port),
                username=settings.smtp_username,
                password=settings.smtp_password,
                sender=settings.smtp_sender,
                starttls=bool(settings.smtp_starttls),
            )
        return cls(email_config=email_config, enabled=settings.notifications_enabled)

    def _render_template(self, template_name: str, context: dict) -> str:
        template = self.template_env.get_template(template_name)
        return template.render(**context)

    def notify_topup(self, receipt: TopUpReceipt) -> bool:
        """Send the top-up receipt. Returns False instead of raising when delivery fails."""
        if not self.enabled or not self.email_config:
            logger.debug("E-mail disabled, skipping top-up receipt invoice=%s", receipt.invoice_number)
            return False
        vat_percent = (Decimal(receipt.vat_rate) * 100).normalize()
        context = {
            "customer_name": receipt.customer_name,
            "credits": receipt.credits,
            "balance": receipt.balance,
            "invoice": receipt,
            "vat_percent": f"{vat_percent:f}",
        }
        text_body = (
            f"Hello {receipt.customer_name},\n\n"
            f"{receipt.credits} credits were added to your wallet. "
            f"Your balance is now {receipt.balance} credits.\n"
            f"Invoice {receipt.invoice_number}: {receipt.currency} {receipt.total:.2f}\n"
        )
        try:
            self.send_email(
                to=receipt.email,
                subject=f"Your credit purchase - invoice {receipt.invoice_number}",
                html_body=self._render_template("emails/topup_receipt.html", context),
                text_body=text_body,
            )
        except (smtplib.SMTPException, OSError):
            logger.warning("Top-up receipt not delivered invoice=%s", receipt.invoice_number, exc_info=True)
            return False
        return True

    def send_email(self, *, to: str, subject: str, html_body: str, text_body: str | None = None) -> None:
        if not self.email_config:
            raise RuntimeError("Email sender not configured")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.email_config.sender
        message["To"] = to
        message.set_content(text_body or "", subtype="plain", charset="utf-8")
        message.add_alternative(html_body, subtype="html", charset="utf-8")

        with smtplib.SMTP(self.email_config.host, self.email_config.port, timeout=30) as smtp:
            if self.email_config.starttls:
                smtp.starttls()
            if self.email_config.username and self.email_config.password:
                smtp.login(self.email_config.username, self.email_config.password)
            smtp.send_message(message)
