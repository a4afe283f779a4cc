"""Webhooks blueprint — /webhooks/payment-provider

Receives Stripe webhook events. The raw body is passed through untouched
for signature verification.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from ledger.errors import InternalError, SignatureError

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")


@webhooks_bp.route("/payment-provider", methods=["POST"])
def payment_provider_webhook():
    """Receive and process a Stripe webhook event.

    1. Get raw body bytes (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Process the event (idempotent via webhook_events table)
    4. Return 200 for processed, duplicate and unmatched events alike

    Only a storage/unexpected failure returns 500, which makes Stripe
    redeliver. Redelivery is always safe.
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return SignatureError("Missing signature").to_response()

    ledger = current_app.extensions["ledger"]

    # --- Verify signature ---
    event = ledger["gateway"].verify_signature(payload, sig_header)
    if event is None:
        return SignatureError().to_response()

    # --- Process event (idempotent) ---
    try:
        outcome = ledger["webhooks"].process(event)
    except Exception:
        logger.error(f"Webhook processing failed for {event.type} ({event.id})", exc_info=True)
        return InternalError("Webhook processing failed").to_response()

    return jsonify({"received": True, "status": outcome}), 200
