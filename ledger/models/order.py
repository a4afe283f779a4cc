"""Order model.

One row per checkout attempt, keyed by the idempotency key the client sent
(or the server generated). Status only ever moves forward:

    PENDING -> PROCESSING -> PAID | FAILED

PAID and FAILED are terminal. The item snapshot and amount are fixed at
creation; later catalog price changes never touch an existing order.
"""

import uuid

from ledger.extensions import db


class OrderStatus:
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"

    ALL = [PENDING, PROCESSING, PAID, FAILED]
    OPEN = [PENDING, PROCESSING]
    TERMINAL = [PAID, FAILED]


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    status = db.Column(
        db.String(20), nullable=False, default=OrderStatus.PENDING, index=True
    )  # PENDING | PROCESSING | PAID | FAILED
    amount = db.Column(db.Integer, nullable=False)  # minor currency units
    currency = db.Column(db.String(3), nullable=False, default="usd")
    items = db.Column(
        db.JSON, nullable=False
    )  # [{id, name, price, quantity}] snapshot taken at creation
    idempotency_key = db.Column(db.String(255), unique=True, nullable=False)
    provider_session_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "cs_test_a1B2..."

    # --- Set only when the payment completes ---
    provider_payment_id = db.Column(
        db.String(255), nullable=True
    )  # e.g. "pi_3Abc..."
    customer_email = db.Column(db.String(255), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_terminal(self):
        return self.status in OrderStatus.TERMINAL

    def to_dict(self):
        """Serialize for API responses (no idempotency key)."""
        return {
            "id": self.id,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "items": self.items,
            "customerEmail": self.customer_email,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }

    def __repr__(self):
        return f"<Order {self.id} ({self.status})>"
