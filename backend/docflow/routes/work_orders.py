# Overview: Flask API routes for work orders and their conversion to invoices.

"""
Work Order API Routes

Work orders are produced by the fulfillment workflow; these endpoints let
it register them, record their lines and completion, and invoice them.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..errors import DocumentError, error_response, internal_error_response
from ..services import conversion_service, work_order_service
from ..validation import parse_optional_datetime, parse_pagination


work_orders_bp = Blueprint("work_orders", __name__, url_prefix="/api/work-orders")


@work_orders_bp.post("")
@require_auth
def create_work_order_route():
    """Body: {"customer_id": 12, "description": "...", "items": [...]}"""
    try:
        work_order = work_order_service.create_work_order(
            g.org_id, g.current_user.id, request.get_json(silent=True)
        )
        return jsonify({"work_order": work_order.to_dict()}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create work order")


@work_orders_bp.get("")
@require_auth
def list_work_orders_route():
    try:
        limit, offset = parse_pagination(request.args)
        rows, total = work_order_service.list_work_orders(
            g.org_id, status=request.args.get("status"), limit=limit, offset=offset
        )
        return jsonify({
            "work_orders": [w.to_dict(include_lines=False) for w in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to list work orders")


@work_orders_bp.get("/<int:work_order_id>")
@require_auth
def get_work_order_route(work_order_id: int):
    try:
        work_order = work_order_service.get_work_order(g.org_id, work_order_id)
        return jsonify({"work_order": work_order.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to load work order")


@work_orders_bp.post("/<int:work_order_id>/items")
@require_auth
def add_work_order_item_route(work_order_id: int):
    try:
        work_order = work_order_service.add_work_order_item(
            g.org_id, g.current_user.id, work_order_id, request.get_json(silent=True)
        )
        return jsonify({"work_order": work_order.to_dict()}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to add work order item")


@work_orders_bp.post("/<int:work_order_id>/status")
@require_auth
def set_work_order_status_route(work_order_id: int):
    """Body: {"status": "IN_PROGRESS" | "COMPLETED" | "CANCELLED"}"""
    try:
        data = request.get_json(silent=True) or {}
        work_order = work_order_service.set_work_order_status(
            g.org_id, g.current_user.id, work_order_id, data.get("status")
        )
        return jsonify({"work_order": work_order.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to change work order status")


@work_orders_bp.post("/<int:work_order_id>/convert")
@require_auth
def convert_work_order_route(work_order_id: int):
    """Invoice a completed work order. Body (optional): {"due_date": ...}"""
    try:
        data = request.get_json(silent=True) or {}
        invoice = conversion_service.convert_work_order(
            g.org_id,
            g.current_user.id,
            work_order_id,
            due_date=parse_optional_datetime(data.get("due_date"), "due_date"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to convert work order")
