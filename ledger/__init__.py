import os
import logging

import click
from flask import Flask, jsonify

from ledger.config import config_by_name
from ledger.errors import InternalError, LedgerError
from ledger.extensions import db, migrate, limiter

__version__ = "1.0.0"


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from ledger import models  # noqa: F401

    # --- Build services (one set per app, shared by every request) ---
    init_services(app)

    # --- Register blueprints ---
    from ledger.blueprints.checkout import checkout_bp
    from ledger.blueprints.webhooks import webhooks_bp
    from ledger.blueprints.orders import orders_bp
    from ledger.blueprints.health import health_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(health_bp)

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def init_services(app):
    """Construct the repository, gateway and processors for this app.

    The storage handle and the Stripe gateway are created once and passed
    into each component explicitly; blueprints reach them through
    ``current_app.extensions["ledger"]``.
    """
    from ledger.services.checkout_service import CheckoutService
    from ledger.services.order_repository import OrderRepository
    from ledger.services.stripe_gateway import StripeGateway
    from ledger.services.webhook_service import WebhookProcessor

    repository = OrderRepository(db)
    gateway = StripeGateway.from_config(app.config)

    app.extensions["ledger"] = {
        "repository": repository,
        "gateway": gateway,
        "checkout": CheckoutService(
            repository, gateway, currency=app.config["CHECKOUT_CURRENCY"]
        ),
        "webhooks": WebhookProcessor(repository),
    }


def register_error_handlers(app):
    """Render every error as ``{success: false, error, code}`` JSON."""

    @app.errorhandler(LedgerError)
    def ledger_error(e):
        return e.to_response()

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Endpoint not found", "code": "not_found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed", "code": "method_not_allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({
            "success": False,
            "error": "Too many requests. Please try again in a moment.",
            "code": "rate_limited",
        }), 429

    @app.errorhandler(500)
    def server_error(e):
        return InternalError().to_response()


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("show-order")
    @click.argument("order_id")
    def show_order(order_id):
        """Print an order's state.

        Usage:
            flask show-order 3f2c...
        """
        from ledger.models.order import Order

        order = db.session.get(Order, order_id)
        if not order:
            click.echo(f"No order with id {order_id}")
            return

        click.echo("")
        click.echo("=" * 60)
        click.echo(f"  Order:       {order.id}")
        click.echo(f"  Status:      {order.status}")
        click.echo(f"  Amount:      {order.amount} {order.currency.upper()} (minor units)")
        click.echo(f"  Key:         {order.idempotency_key}")
        click.echo(f"  Session:     {order.provider_session_id or '-'}")
        click.echo(f"  Payment:     {order.provider_payment_id or '-'}")
        click.echo(f"  Email:       {order.customer_email or '-'}")
        click.echo(f"  Paid at:     {order.paid_at.isoformat() if order.paid_at else '-'}")
        click.echo("  Items:")
        for item in order.items:
            click.echo(
                f"    {item['quantity']} x {item['name']} ({item['id']}) @ {item['price']}"
            )
        click.echo("=" * 60)

    @app.cli.command("list-events")
    @click.option("--limit", default=20, help="Number of events to show.")
    def list_events(limit):
        """List the most recently processed webhook events.

        Usage:
            flask list-events
            flask list-events --limit 50
        """
        repository = app.extensions["ledger"]["repository"]
        events = repository.recent_events(limit=limit)
        if not events:
            click.echo("No webhook events recorded.")
            return
        for event in events:
            processed = event.processed_at.isoformat() if event.processed_at else "-"
            click.echo(
                f"{processed}  {event.id}  {event.event_type}  order={event.order_id or '-'}"
            )
