"""Checkout blueprint — POST /checkout

Accepts a cart, returns the Stripe-hosted checkout URL.

Request:
    {"items": [{"id": "p1", "name": "Widget", "price": 500, "quantity": 2}],
     "idempotencyKey": "optional-client-key"}

Response:
    {"success": true, "sessionUrl": "https://checkout.stripe.com/...", "orderId": "..."}
    {"success": false, "error": "...", "code": "..."}

The idempotency key may also be sent as an ``Idempotency-Key`` header; the
body wins if both are present.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from ledger.errors import InternalError, LedgerError, ValidationError
from ledger.extensions import limiter

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__)


@checkout_bp.route("/checkout", methods=["POST"])
@limiter.limit(lambda: current_app.config["CHECKOUT_RATE_LIMIT"])
def create_checkout():
    """Create (or replay) a Checkout Session for the posted cart.

    Retrying with the same idempotency key returns the same order and
    session URL instead of creating new ones.
    """
    data = request.get_json(silent=True)

    try:
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        idempotency_key = data.get("idempotencyKey")
        if idempotency_key is None:
            idempotency_key = request.headers.get("Idempotency-Key")

        checkout = current_app.extensions["ledger"]["checkout"]
        result = checkout.create_checkout_session(
            data.get("items"), idempotency_key
        )
    except LedgerError as e:
        logger.info(f"Checkout rejected: {e.code}")
        return e.to_response()
    except Exception:
        logger.error("Checkout error", exc_info=True)
        return InternalError().to_response()

    return jsonify({
        "success": True,
        "sessionUrl": result.session_url,
        "orderId": result.order_id,
    }), 200
