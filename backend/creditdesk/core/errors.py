from __future__ import annotations

from typing import Any, Dict, Optional


class BillingError(RuntimeError):
    """Domain error raised by the billing services and rendered by the API layer."""

    status_code: int = 500
    default_message: str = "Billing operation failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: Optional[Dict[str, Any]] = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BillingError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(BillingError):
    status_code = 404
    default_message = "Not found"


class ConflictError(BillingError):
    status_code = 409
    default_message = "Conflict"


class PaymentError(BillingError):
    status_code = 402
    default_message = "Payment failed"


class PaymentAuthRequired(PaymentError):
    """The card issuer demands step-up authentication; the client must re-prompt the cardholder."""

    default_message = "Authentication required for card. Please re-authenticate."

    def __init__(self, message: str | None = None, *, payment_intent_id: str | None = None) -> None:
        super().__init__(
            message,
            details={"code": "authentication_required", "paymentIntentId": payment_intent_id},
        )
        self.payment_intent_id = payment_intent_id


class InsufficientCreditsError(BillingError):
    status_code = 400
    default_message = "Insufficient credits"


class VatServiceError(BillingError):
    status_code = 500
    default_message = "Failed to validate VAT number."


class ReconciliationError(BillingError):
    """A charge succeeded but the matching wallet/invoice writes did not."""

    status_code = 500
    default_message = "Payment received but the order could not be recorded. Support has been notified."
