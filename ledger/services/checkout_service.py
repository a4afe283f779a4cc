"""Checkout service — turns a cart into a Stripe Checkout Session.

Flow for one request:
1. Validate the cart (nothing is stored if it's malformed)
2. Resolve the idempotency key (client-supplied or generated)
3. Reuse the order already holding that key, or insert a PENDING one
4. Replay the order's live session if it has one
5. Otherwise create a session at Stripe with the same key
6. Attach the session to the order (PENDING -> PROCESSING)

The order row is written before Stripe is called, so a failure at Stripe
leaves a PENDING order that the same key can pick up again later.
"""

import hashlib
import logging
from dataclasses import dataclass

from ledger.errors import CheckoutClosedError, ProviderError, ValidationError
from ledger.services.idempotency import MAX_KEY_LENGTH, resolve_idempotency_key
from ledger.services.stripe_gateway import SESSION_COMPLETE, Err

logger = logging.getLogger(__name__)

MAX_LINE_ITEMS = 100  # Stripe Checkout limit


@dataclass(frozen=True)
class CheckoutResult:
    session_url: str
    order_id: str


# ──────────────────────────────────────────────
# Validation & totals
# ──────────────────────────────────────────────

def _is_int(value):
    # bool is an int subclass; True must not count as quantity 1
    return isinstance(value, int) and not isinstance(value, bool)


def validate_items(items):
    """Validate cart items and return a normalized snapshot.

    Each snapshot entry is ``{id, name, price, quantity}`` with integer
    ``price`` (minor units) and ``quantity``. Raises ValidationError.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Cart items are required")
    if len(items) > MAX_LINE_ITEMS:
        raise ValidationError(f"A checkout can contain at most {MAX_LINE_ITEMS} items")

    snapshot = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object")

        item_id = item.get("id")
        if not isinstance(item_id, str) or not item_id.strip():
            raise ValidationError("Each item must have id and quantity >= 1")

        quantity = item.get("quantity")
        if not _is_int(quantity) or quantity < 1:
            raise ValidationError("Each item must have id and quantity >= 1")

        price = item.get("price")
        if not _is_int(price) or price < 0:
            raise ValidationError(
                "Each item must have an integer price in minor currency units"
            )

        name = item.get("name")
        if name is None:
            name = item_id
        elif not isinstance(name, str):
            raise ValidationError("Item name must be a string")

        snapshot.append({
            "id": item_id,
            "name": name or item_id,
            "price": price,
            "quantity": quantity,
        })
    return snapshot


def validate_idempotency_key(idempotency_key):
    """Reject keys the orders table can't hold. None and "" mean "generate one"."""
    if idempotency_key is None or idempotency_key == "":
        return
    if not isinstance(idempotency_key, str):
        raise ValidationError("idempotencyKey must be a string")
    if len(idempotency_key) > MAX_KEY_LENGTH:
        raise ValidationError(
            f"idempotencyKey must be at most {MAX_KEY_LENGTH} characters"
        )


def calculate_order_total(items):
    """Sum of price x quantity, in integer minor units."""
    return sum(item["price"] * item["quantity"] for item in items)


def replacement_session_key(key, stale_session_id):
    """Provider idempotency key for replacing an expired session.

    The original key would make Stripe replay the expired session. Deriving
    the new one from the stale session ID keeps concurrent replacements
    collapsed into one. Stripe caps keys at 255 characters.
    """
    derived = f"{key}:{stale_session_id}"
    if len(derived) > MAX_KEY_LENGTH:
        derived = hashlib.sha256(derived.encode("utf-8")).hexdigest()
    return derived


# ──────────────────────────────────────────────
# Orchestration
# ──────────────────────────────────────────────

class CheckoutService:
    """Creates (or replays) the Stripe session for a checkout attempt."""

    def __init__(self, repository, gateway, currency="usd"):
        self.repository = repository
        self.gateway = gateway
        self.currency = currency

    def create_checkout_session(self, items, idempotency_key=None):
        """Return a ``CheckoutResult`` for the cart.

        Raises ValidationError, CheckoutClosedError or ProviderError.
        """
        snapshot = validate_items(items)
        validate_idempotency_key(idempotency_key)
        key = resolve_idempotency_key(idempotency_key)

        logger.info(f"Checkout requested with idempotency key {key}")

        order = self.repository.find_by_idempotency_key(key)
        if order is None:
            order, _ = self.repository.insert_pending(
                key,
                snapshot,
                calculate_order_total(snapshot),
                self.currency,
            )
        else:
            logger.info(f"Idempotency key {key} maps to existing order {order.id}")

        if order.is_terminal:
            logger.info(f"Order {order.id} is {order.status}, not reopening checkout")
            raise CheckoutClosedError()

        stale_session_id = None
        if order.provider_session_id:
            session = self._live_session(order)
            if session is not None:
                logger.info(f"Replaying session {session.id} for order {order.id}")
                return CheckoutResult(session_url=session.url, order_id=order.id)
            stale_session_id = order.provider_session_id

        return self._start_session(order, key, stale_session_id)

    def _live_session(self, order):
        """The order's current session if the customer can still use it.

        Returns None when the session is gone or expired, meaning a
        replacement should be minted.
        """
        result = self.gateway.retrieve_session(order.provider_session_id)
        if isinstance(result, Err):
            raise ProviderError(result.error.kind)

        session = result.value
        if session is None:
            return None
        if session.is_usable:
            return session
        if session.status == SESSION_COMPLETE:
            # Paid at Stripe; the completed webhook will settle the order.
            raise CheckoutClosedError()
        logger.info(
            f"Session {session.id} for order {order.id} is {session.status}, "
            f"minting a replacement"
        )
        return None

    def _start_session(self, order, key, stale_session_id=None):
        provider_key = key
        if stale_session_id is not None:
            provider_key = replacement_session_key(key, stale_session_id)

        result = self.gateway.create_session(
            order.id,
            order.items,
            provider_key,
            currency=order.currency,
        )
        if isinstance(result, Err):
            logger.error(
                f"Stripe session creation failed for order {order.id} "
                f"({result.error.kind}); order stays {order.status}"
            )
            raise ProviderError(result.error.kind)

        session = result.value
        order = self.repository.attach_session(order.id, session.id)
        if order.provider_session_id != session.id:
            logger.warning(
                f"Order {order.id} became {order.status} while session "
                f"{session.id} was being created"
            )
            raise CheckoutClosedError()

        logger.info(f"Session {session.id} created for order {order.id}")
        return CheckoutResult(session_url=session.url, order_id=order.id)
