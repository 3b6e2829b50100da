# Overview: Flask API routes for invoices issued from orders.

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..extensions import db
from ..services import invoices_service
from ..validation import InvoiceFilter, Period, ValidationError
from ..decorators import require_auth

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """
    Query params:
    - search: invoice code, order code, customer or agent
    - payment_status, is_printed
    - start_date, end_date (YYYY-MM-DD, Vietnam local, inclusive) or period preset
    - page, limit
    """
    return invoices_service.list_invoices(InvoiceFilter.from_args(request.args))


@invoices_bp.get("/stats")
@require_auth
def invoice_stats_route():
    return invoices_service.invoice_stats(Period.from_args(request.args))


@invoices_bp.get("/unprinted")
@require_auth
def unprinted_invoices_route():
    invoices = invoices_service.unprinted_invoices()
    return {"items": [i.to_dict() for i in invoices], "count": len(invoices)}


@invoices_bp.get("/order/<string:order_number>")
@require_auth
def invoice_by_order_route(order_number: str):
    invoice = invoices_service.get_invoice_by_order(order_number)
    return {"invoice": invoices_service.invoice_detail(invoice)}


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    invoice = invoices_service.get_invoice(invoice_id)
    return {"invoice": invoices_service.invoice_detail(invoice)}


@invoices_bp.get("/<int:invoice_id>/print-data")
@require_auth
def print_data_route(invoice_id: int):
    return invoices_service.print_data(invoice_id)


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """Body: order_number, optional notes. One invoice per active order."""
    data = request.get_json(silent=True) or {}
    try:
        order_number = data.get("order_number")
        if not isinstance(order_number, str) or not order_number.strip():
            raise ValidationError("order_number is required")
        notes = data.get("notes")
        invoice = invoices_service.create_invoice(
            order_number=order_number.strip(),
            actor=g.actor,
            notes=str(notes).strip() or None if notes is not None else None,
        )
        return jsonify({"invoice": invoices_service.invoice_detail(invoice)}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>/mark-printed")
@require_auth
def mark_printed_route(invoice_id: int):
    try:
        invoice = invoices_service.mark_printed(invoice_id=invoice_id, actor=g.actor)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark invoice printed")
        return jsonify({"error": "Internal server error"}), 500
