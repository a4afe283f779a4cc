"""Webhook service — applies verified Stripe events to orders exactly once.

Stripe delivers events at least once, in any order. Each event is handled
inside a single transaction:

1. Already in webhook_events?  -> stop ("already_processed")
2. Find the order by checkout session ID (row-locked)
3. Order already PAID/FAILED?  -> no mutation
4. Otherwise apply the transition (completed -> PAID, expired -> FAILED)
5. Insert the webhook_events row

A crash anywhere before commit leaves nothing behind, so Stripe's retry
runs the whole thing again cleanly. If two deliveries of one event race
past step 1, the second one's insert hits the primary key, its transaction
rolls back (order change included) and it reports "already_processed".
"""

import enum
import logging

from ledger.services.order_repository import DuplicateEventError

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    """The Stripe event types the ledger knows about."""

    COMPLETED = "checkout.session.completed"
    EXPIRED = "checkout.session.expired"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, event_type):
        try:
            kind = cls(event_type)
        except ValueError:
            return cls.UNKNOWN
        return kind


class WebhookOutcome:
    """What ``WebhookProcessor.process`` did. All three are acknowledged with 200."""

    APPLIED = "processed"
    ALREADY_PROCESSED = "already_processed"
    ORDER_NOT_FOUND = "order_not_found"


def _payment_intent_id(session):
    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, dict):  # expanded
        return payment_intent.get("id")
    return payment_intent


def _customer_email(session):
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email")


class WebhookProcessor:
    """Consumes verified events; never sees an unsigned payload."""

    def __init__(self, repository):
        self.repository = repository
        self._handlers = {
            EventKind.COMPLETED: self._handle_completed,
            EventKind.EXPIRED: self._handle_expired,
            EventKind.PAYMENT_FAILED: self._handle_payment_failed,
            EventKind.UNKNOWN: self._handle_unknown,
        }

    def process(self, event):
        """Apply ``event`` (a VerifiedEvent) and return a WebhookOutcome value.

        Storage failures propagate; the caller answers 500 so Stripe retries.
        """
        kind = EventKind.from_type(event.type)
        try:
            return self.repository.transaction(
                lambda tx: self._process_in(tx, event, kind)
            )
        except DuplicateEventError:
            logger.info(f"Webhook event {event.id} was recorded concurrently, skipping")
            return WebhookOutcome.ALREADY_PROCESSED

    def _process_in(self, tx, event, kind):
        if tx.event_exists(event.id):
            logger.info(f"Duplicate webhook event {event.id}, skipping")
            return WebhookOutcome.ALREADY_PROCESSED

        logger.info(f"Processing webhook event {event.type} ({event.id})")
        outcome, order_id = self._handlers[kind](tx, event)
        tx.record_event(event.id, event.type, order_id=order_id)
        return outcome

    # ──────────────────────────────────────────────
    # Event Handlers
    # ──────────────────────────────────────────────
    # Each returns (outcome, order_id or None) and must only use ``tx``.

    def _locate_order(self, tx, event):
        session_id = event.object.get("id")
        if not session_id:
            logger.warning(f"{event.type} {event.id} carries no session id")
            return None
        order = tx.find_order_by_session_id_for_update(session_id)
        if order is None:
            logger.warning(f"{event.type} {event.id}: no order for session {session_id}")
        return order

    def _handle_completed(self, tx, event):
        """checkout.session.completed -> PAID, with payment id, email and paid_at."""
        order = self._locate_order(tx, event)
        if order is None:
            return WebhookOutcome.ORDER_NOT_FOUND, None
        if order.is_terminal:
            logger.info(f"Order {order.id} already {order.status}, recording {event.id} only")
            return WebhookOutcome.APPLIED, order.id

        session = event.object
        if tx.mark_paid(
            order.id,
            provider_payment_id=_payment_intent_id(session),
            customer_email=_customer_email(session),
        ):
            logger.info(f"Order {order.id} marked as PAID")
        return WebhookOutcome.APPLIED, order.id

    def _handle_expired(self, tx, event):
        """checkout.session.expired -> FAILED, unless the order already settled."""
        order = self._locate_order(tx, event)
        if order is None:
            return WebhookOutcome.ORDER_NOT_FOUND, None
        if order.is_terminal:
            logger.info(f"Order {order.id} already {order.status}, ignoring late expiry {event.id}")
            return WebhookOutcome.APPLIED, order.id

        if tx.mark_failed(order.id):
            logger.info(f"Order {order.id} marked as FAILED (expired)")
        return WebhookOutcome.APPLIED, order.id

    def _handle_payment_failed(self, tx, event):
        """payment_intent.payment_failed — informational only.

        The customer can retry with another card on the hosted page, so the
        order is left alone.
        """
        intent = event.object
        last_error = (intent.get("last_payment_error") or {}).get("message")
        logger.info(f"Payment failed for intent {intent.get('id')}: {last_error}")
        return WebhookOutcome.APPLIED, None

    def _handle_unknown(self, tx, event):
        logger.info(f"Unhandled webhook event type: {event.type}")
        return WebhookOutcome.APPLIED, None
