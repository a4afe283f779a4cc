"""Stripe gateway — all Stripe API calls and webhook signature checks.

Responsible for:
- Creating Stripe Checkout Sessions (one-off ``payment`` mode)
- Retrieving a session so a retried checkout can replay its redirect URL
- Verifying webhook signatures against the exact request bytes
- Classifying Stripe failures into ``ProviderErrorKind`` values

Expected failures come back as ``Err`` values instead of exceptions, so
callers branch on the result rather than on Stripe's exception classes.
Nothing in here touches the database.
"""

import json
import logging
from dataclasses import dataclass, field

import stripe

from ledger.errors import ProviderErrorKind

logger = logging.getLogger(__name__)

# Stripe session.status values
SESSION_OPEN = "open"
SESSION_COMPLETE = "complete"
SESSION_EXPIRED = "expired"


@dataclass(frozen=True)
class Session:
    """The parts of a Stripe Checkout Session the ledger cares about."""

    id: str
    url: str | None
    status: str | None = None

    @property
    def is_usable(self):
        """True while the customer can still be sent to ``url`` to pay."""
        return bool(self.url) and self.status == SESSION_OPEN


@dataclass(frozen=True)
class ClassifiedError:
    kind: str
    detail: str = ""  # raw provider text, for logs only


@dataclass(frozen=True)
class Ok:
    value: object


@dataclass(frozen=True)
class Err:
    error: ClassifiedError


@dataclass(frozen=True)
class VerifiedEvent:
    """A provider event whose signature has been checked."""

    id: str
    type: str
    object: dict = field(default_factory=dict)  # event["data"]["object"]

    @classmethod
    def from_payload(cls, payload):
        """Build from a decoded event body. Returns None if id/type are missing."""
        if not isinstance(payload, dict):
            return None
        event_id = payload.get("id")
        event_type = payload.get("type")
        if not event_id or not event_type:
            return None
        obj = (payload.get("data") or {}).get("object") or {}
        return cls(id=event_id, type=event_type, object=obj)


# Checked in order; the first matching class wins.
_ERROR_KINDS = (
    (stripe.CardError, ProviderErrorKind.CARD_DECLINED),
    (stripe.RateLimitError, ProviderErrorKind.RATE_LIMITED),
    (stripe.IdempotencyError, ProviderErrorKind.IDEMPOTENCY_CONFLICT),
    (stripe.InvalidRequestError, ProviderErrorKind.INVALID_REQUEST),
    (stripe.AuthenticationError, ProviderErrorKind.AUTH_ERROR),
    (stripe.PermissionError, ProviderErrorKind.AUTH_ERROR),
    (stripe.APIConnectionError, ProviderErrorKind.CONNECTION_ERROR),
)


def classify_stripe_error(error):
    """Map a ``stripe.StripeError`` to a ``ClassifiedError``.

    Anything unrecognised (``stripe.APIError``, i.e. a 5xx on Stripe's side)
    is treated as a connection error: the request is safe to retry with the
    same idempotency key.
    """
    detail = str(error)
    if getattr(error, "code", None) == "idempotency_key_in_use":
        return ClassifiedError(ProviderErrorKind.IDEMPOTENCY_CONFLICT, detail)
    for error_cls, kind in _ERROR_KINDS:
        if isinstance(error, error_cls):
            return ClassifiedError(kind, detail)
    return ClassifiedError(ProviderErrorKind.CONNECTION_ERROR, detail)


def to_stripe_line_items(items, currency):
    """Convert an order's item snapshot to Checkout ``line_items``."""
    return [
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": item["name"]},
                "unit_amount": item["price"],  # already in minor units
            },
            "quantity": item["quantity"],
        }
        for item in items
    ]


def _to_session(stripe_session):
    return Session(
        id=stripe_session.id,
        url=getattr(stripe_session, "url", None),
        status=getattr(stripe_session, "status", None),
    )


class StripeGateway:
    """Payment provider gateway backed by the Stripe SDK."""

    def __init__(self, api_key, webhook_secret, frontend_url,
                 webhook_tolerance=300):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")
        self.webhook_tolerance = webhook_tolerance

    @classmethod
    def from_config(cls, config):
        """Build the gateway and bound the SDK's HTTP behaviour.

        The timeout and retry count are process-wide SDK settings, so they
        are applied once here at startup.
        """
        stripe.max_network_retries = config["STRIPE_MAX_NETWORK_RETRIES"]
        stripe.default_http_client = stripe.RequestsClient(
            timeout=config["STRIPE_TIMEOUT_SECONDS"]
        )
        return cls(
            api_key=config["STRIPE_SECRET_KEY"],
            webhook_secret=config["STRIPE_WEBHOOK_SECRET"],
            frontend_url=config["FRONTEND_URL"],
            webhook_tolerance=config["STRIPE_WEBHOOK_TOLERANCE"],
        )

    # ──────────────────────────────────────────────
    # Checkout Sessions
    # ──────────────────────────────────────────────

    def create_session(self, order_ref, line_items, idempotency_key,
                       currency="usd"):
        """Create a Checkout Session for an order's item snapshot.

        Stripe deduplicates on ``idempotency_key``: the same key with the
        same parameters replays the original session, the same key with
        different parameters fails with an idempotency conflict.

        Returns ``Ok(Session)`` or ``Err(ClassifiedError)``.
        """
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                mode="payment",
                line_items=to_stripe_line_items(line_items, currency),
                success_url=(
                    f"{self.frontend_url}/success"
                    f"?session_id={{CHECKOUT_SESSION_ID}}"
                ),
                cancel_url=f"{self.frontend_url}/cancel",
                client_reference_id=order_ref,
                customer_creation="always",
                metadata={"order_id": order_ref},
            )
        except stripe.StripeError as e:
            error = classify_stripe_error(e)
            logger.error(
                f"Stripe session create failed for order {order_ref}: "
                f"{error.kind} ({type(e).__name__}: {error.detail})"
            )
            return Err(error)

        return Ok(_to_session(session))

    def retrieve_session(self, session_id):
        """Fetch a Checkout Session by ID.

        Returns ``Ok(Session)``, ``Ok(None)`` when Stripe says the session
        does not exist, or ``Err(ClassifiedError)`` when Stripe could not be
        asked. Only the definitive "gone" answer is None; a timeout must
        not look like a missing session, or the caller would mint a second
        live session for the same order.
        """
        try:
            session = stripe.checkout.Session.retrieve(
                session_id, api_key=self.api_key
            )
        except stripe.InvalidRequestError as e:
            logger.info(f"Stripe session {session_id} not retrievable: {e}")
            return Ok(None)
        except stripe.StripeError as e:
            error = classify_stripe_error(e)
            logger.warning(
                f"Stripe session retrieve failed for {session_id}: "
                f"{error.kind} ({type(e).__name__}: {error.detail})"
            )
            return Err(error)

        return Ok(_to_session(session))

    # ──────────────────────────────────────────────
    # Webhook Signatures
    # ──────────────────────────────────────────────

    def verify_signature(self, raw_payload, signature_header):
        """Verify a webhook signature and decode the event.

        ``raw_payload`` must be the unmodified request body. Any change to
        it (re-serialization, whitespace, key order) breaks the HMAC.

        Returns a ``VerifiedEvent`` or None.
        """
        if not raw_payload or not signature_header:
            return None

        if isinstance(raw_payload, bytes):
            try:
                raw_payload = raw_payload.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("Webhook body is not valid UTF-8")
                return None

        try:
            stripe.WebhookSignature.verify_header(
                raw_payload,
                signature_header,
                self.webhook_secret,
                self.webhook_tolerance,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            return None

        try:
            payload = json.loads(raw_payload)
        except ValueError:
            logger.warning("Signed webhook body is not valid JSON")
            return None

        event = VerifiedEvent.from_payload(payload)
        if event is None:
            logger.warning("Signed webhook body has no event id or type")
        return event
