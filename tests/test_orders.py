"""Tests for the order lookup, health endpoint, error rendering and CLI."""

from ledger import __version__
from ledger.extensions import db
from ledger.models.order import OrderStatus
from ledger.models.webhook_event import WebhookEvent


class TestGetOrder:
    """GET /orders/<order_id>"""

    def test_returns_order(self, client, make_order):
        order_id = make_order(idempotency_key="secret-client-key")

        resp = client.get(f"/orders/{order_id}")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["order"]["id"] == order_id
        assert data["order"]["status"] == OrderStatus.PROCESSING
        assert data["order"]["amount"] == 1000
        assert data["order"]["currency"] == "usd"
        assert data["order"]["paidAt"] is None
        assert "secret-client-key" not in resp.get_data(as_text=True)

    def test_unknown_order_returns_404(self, client):
        resp = client.get("/orders/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json() == {
            "success": False,
            "error": "Order not found",
            "code": "order_not_found",
        }


class TestHealth:
    """GET /health"""

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["timestamp"]

    def test_security_headers(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"


class TestErrorHandlers:
    """Framework errors render in the same JSON shape."""

    def test_unknown_route_is_json_404(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"

    def test_wrong_method_is_json_405(self, client):
        resp = client.get("/checkout")
        assert resp.status_code == 405
        assert resp.get_json()["success"] is False


class TestCli:
    """flask show-order / flask list-events"""

    def test_show_order(self, app, make_order):
        order_id = make_order(customer_email="buyer@example.com")

        result = app.test_cli_runner().invoke(args=["show-order", order_id])

        assert result.exit_code == 0
        assert order_id in result.output
        assert "PROCESSING" in result.output
        assert "buyer@example.com" in result.output
        assert "2 x Widget (p1) @ 500" in result.output

    def test_show_unknown_order(self, app):
        result = app.test_cli_runner().invoke(args=["show-order", "missing"])
        assert result.exit_code == 0
        assert "No order with id missing" in result.output

    def test_list_events(self, app, make_order):
        order_id = make_order()
        db.session.add(WebhookEvent(
            id="evt_cli_1",
            event_type="checkout.session.completed",
            order_id=order_id,
        ))
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["list-events", "--limit", "5"])

        assert result.exit_code == 0
        assert "evt_cli_1" in result.output
        assert f"order={order_id}" in result.output

    def test_list_events_empty(self, app):
        result = app.test_cli_runner().invoke(args=["list-events"])
        assert "No webhook events recorded." in result.output
