"""Shared test fixtures for the order ledger test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- services: the app's repository / gateway / checkout / webhooks
- make_order: insert an order in any state
- signed_webhook: POST a correctly signed Stripe event
- sign_header / event_factory: build signatures and checkout.session events
"""

import hashlib
import hmac
import json
import time
import uuid

import pytest

from ledger import create_app
from ledger.extensions import db as _db
from ledger.models.order import Order, OrderStatus

WEBHOOK_SECRET = "whsec_test_fake"  # matches TestConfig
WEBHOOK_URL = "/webhooks/payment-provider"


def sign(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for ``payload`` (str)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def session_event(event_id, event_type, session_id, **session_fields):
    """Build a checkout.session.* event body."""
    obj = {"id": session_id, "object": "checkout.session"}
    obj.update(session_fields)
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["ledger"]


@pytest.fixture
def make_order(db_session):
    """Insert an order directly. Returns its id."""

    def _make_order(status=OrderStatus.PROCESSING, session_id="cs_test_existing",
                    idempotency_key=None, items=None, **fields):
        items = items or [{"id": "p1", "name": "Widget", "price": 500, "quantity": 2}]
        order = Order(
            status=status,
            amount=sum(i["price"] * i["quantity"] for i in items),
            currency="usd",
            items=items,
            idempotency_key=idempotency_key or str(uuid.uuid4()),
            provider_session_id=session_id,
            **fields,
        )
        db_session.add(order)
        db_session.commit()
        return order.id

    return _make_order


@pytest.fixture
def signed_webhook(client):
    """POST an event body with a valid signature over the exact bytes sent."""

    def _post(event, secret=WEBHOOK_SECRET):
        payload = event if isinstance(event, str) else json.dumps(event)
        return client.post(
            WEBHOOK_URL,
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign(payload, secret=secret)},
        )

    return _post


@pytest.fixture
def sign_header():
    return sign


@pytest.fixture
def event_factory():
    return session_event
