"""Error taxonomy for the checkout and webhook flows.

Every error carries a user-safe message, a machine-readable code and the
HTTP status the blueprints answer with. Raw provider or database text never
ends up in ``message``; it goes to the operator logs instead.
"""

from flask import jsonify


class LedgerError(Exception):
    """Base error with a consistent response schema."""

    status_code = 500
    code = "internal_error"
    message = "An unexpected error occurred. Please try again."

    def __init__(self, message=None, code=None, status_code=None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_response(self):
        """Build the ``({success, error, code}, status)`` JSON response."""
        body = {"success": False, "error": self.message, "code": self.code}
        return jsonify(body), self.status_code


class ValidationError(LedgerError):
    """Malformed or missing request fields. Raised before any persistence."""

    status_code = 400
    code = "validation_error"
    message = "Invalid request."


class SignatureError(LedgerError):
    """Missing or invalid webhook signature."""

    status_code = 400
    code = "invalid_signature"
    message = "Invalid signature"


class CheckoutClosedError(LedgerError):
    """Replay of an idempotency key whose order already reached a terminal state."""

    status_code = 409
    code = "checkout_closed"
    message = "This checkout has already been completed or has expired. Please start a new checkout."


class OrderNotFoundError(LedgerError):
    status_code = 404
    code = "order_not_found"
    message = "Order not found"


class InternalError(LedgerError):
    """Storage or unexpected failure. Details are logged, never returned."""


class ProviderError(LedgerError):
    """A classified payment provider failure.

    ``kind`` is one of the ``ProviderErrorKind`` values; the message and
    status are looked up from it so every kind answers the same way.
    """

    def __init__(self, kind):
        self.kind = kind
        message, status_code = PROVIDER_ERROR_RESPONSES[kind]
        super().__init__(message=message, code=kind, status_code=status_code)


class ProviderErrorKind:
    """Classification of payment provider failures."""

    CARD_DECLINED = "card_declined"
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    CONNECTION_ERROR = "connection_error"
    AUTH_ERROR = "auth_error"
    IDEMPOTENCY_CONFLICT = "idempotency_conflict"

    ALL = [
        CARD_DECLINED,
        RATE_LIMITED,
        INVALID_REQUEST,
        CONNECTION_ERROR,
        AUTH_ERROR,
        IDEMPOTENCY_CONFLICT,
    ]


# kind -> (user-safe message, HTTP status)
PROVIDER_ERROR_RESPONSES = {
    ProviderErrorKind.CARD_DECLINED: (
        "Your card was declined. Please try a different payment method.",
        402,
    ),
    ProviderErrorKind.RATE_LIMITED: (
        "Service is temporarily busy. Please try again in a moment.",
        429,
    ),
    ProviderErrorKind.INVALID_REQUEST: (
        "The payment request could not be processed. Please check your cart and try again.",
        400,
    ),
    ProviderErrorKind.CONNECTION_ERROR: (
        "Unable to connect to payment service. Please try again.",
        503,
    ),
    ProviderErrorKind.AUTH_ERROR: (
        "Payment service is temporarily unavailable. Please try again later.",
        502,
    ),
    ProviderErrorKind.IDEMPOTENCY_CONFLICT: (
        "A conflicting request was made. Please refresh and try again.",
        409,
    ),
}
