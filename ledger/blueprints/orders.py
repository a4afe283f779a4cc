"""Orders blueprint — GET /orders/<order_id>

Read-only status lookup, polled by the storefront's success page while the
completed webhook is on its way.
"""

from flask import Blueprint, current_app, jsonify

from ledger.errors import OrderNotFoundError

orders_bp = Blueprint("orders", __name__, url_prefix="/orders")


@orders_bp.route("/<order_id>")
def get_order(order_id):
    order = current_app.extensions["ledger"]["repository"].get(order_id)
    if order is None:
        return OrderNotFoundError().to_response()
    return jsonify({"success": True, "order": order.to_dict()})
