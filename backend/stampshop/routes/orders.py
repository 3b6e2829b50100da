# Overview: Flask API routes for orders; every mutation moves stock in the same transaction.

"""
Order routes.

Creating an order exports stock for each line; updating items reconciles the
stock difference; cancelling or deleting an active order returns everything.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..extensions import db
from ..services import orders_service
from ..time_utils import now_in_vietnam
from ..validation import OrderFilter, Period, ValidationError
from ..decorators import require_auth

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _items(orders) -> dict:
    return {"items": [o.to_dict() for o in orders], "count": len(orders)}


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query params:
    - search: order number, customer, agent or notes
    - payment_status: pending | completed | debt
    - status: active | cancelled
    - customer_id, agent_id
    - start_date, end_date (YYYY-MM-DD, Vietnam local, inclusive) or period preset
    - page, limit
    """
    return orders_service.list_orders(OrderFilter.from_args(request.args))


@orders_bp.get("/stats")
@require_auth
def order_stats_route():
    start, end = Period.from_args(request.args).bounds()
    return orders_service.order_stats(start, end)


@orders_bp.get("/pending-payment")
@require_auth
def pending_payment_route():
    return _items(orders_service.pending_payment_orders())


@orders_bp.get("/monthly-revenue")
@require_auth
def monthly_revenue_route():
    year = request.args.get("year", type=int) or now_in_vietnam().year
    return {"year": year, "months": orders_service.monthly_revenue(year)}


@orders_bp.get("/customer/<int:customer_id>")
@require_auth
def orders_by_customer_route(customer_id: int):
    return _items(orders_service.orders_by_customer(customer_id))


@orders_bp.get("/agent/<int:agent_id>")
@require_auth
def orders_by_agent_route(agent_id: int):
    return _items(orders_service.orders_by_agent(agent_id))


@orders_bp.get("/number/<string:order_number>")
@require_auth
def get_order_by_number_route(order_number: str):
    return {"order": orders_service.get_order_by_number(order_number).to_dict()}


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    return {"order": orders_service.get_order(order_id).to_dict()}


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Body:
    - items: [{product_id, quantity, unit_price, notes?}] (at least one)
    - customer_id, or customer_name/customer_phone/customer_address for a new
      customer; neither means the walk-in customer
    - agent_id, vat_rate, shipping_fee, payment_status, paid_amount,
      debt_amount, delivery_date, delivery_address, notes
    """
    try:
        order = orders_service.create_order(payload=request.get_json(silent=True) or {}, actor=g.actor)
        return jsonify({"order": order.to_dict()}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.route("/<int:order_id>", methods=["PUT", "PATCH"])
@require_auth
def update_order_route(order_id: int):
    try:
        order = orders_service.update_order(
            order_id=order_id, payload=request.get_json(silent=True) or {}, actor=g.actor
        )
        return jsonify({"order": order.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/payment-status")
@require_auth
def update_payment_status_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        status = data.get("payment_status")
        if not isinstance(status, str):
            raise ValidationError("payment_status is required")
        order = orders_service.update_payment_status(order_id=order_id, payment_status=status, actor=g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update payment status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    try:
        order = orders_service.cancel_order(order_id=order_id, actor=g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_auth
def delete_order_route(order_id: int):
    try:
        orders_service.delete_order(order_id=order_id, actor=g.actor)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500
