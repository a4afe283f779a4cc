"""Webhook event model (idempotency table).

Every verified provider event is recorded by the provider's own event ID,
in the same transaction that applies its effect to the order. The primary
key makes the table the dedup log: a second insert of the same ID fails at
the database, no matter how many workers raced past the existence check.

Rows are append-only and never updated or deleted.
"""

from ledger.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(db.String(255), primary_key=True)  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True, index=True
    )  # null when no order matched or the event is informational
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<WebhookEvent {self.id} ({self.event_type})>"
