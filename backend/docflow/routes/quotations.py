# Overview: Flask API routes for quotations; parses input and returns JSON responses.

# backend/docflow/routes/quotations.py
"""
Quotation API Routes

DESIGN:
- Tenant and caller come from the session (g.org_id, g.current_user)
- Bodies go through validate_payload allowlists (unknown fields rejected,
  org_id/tenant_id dropped)
- Every response carries the full quotation with items and totals

ERRORS:
    {"error": CODE, "message": ..., "details": {...}}
    404 NOT_FOUND, 409 INVALID_STATE / ALREADY_CONVERTED / CONFLICT,
    422 EMPTY_DOCUMENT / EXPIRED, 400 VALIDATION_ERROR
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..errors import DocumentError, ValidationError, error_response, internal_error_response
from ..services import conversion_service, quotation_service
from ..validation import parse_optional_datetime, parse_optional_int, parse_pagination


quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")


# =============================================================================
# CREATE / READ
# =============================================================================

@quotations_bp.post("")
@require_auth
def create_quotation_route():
    """
    Create a DRAFT quotation.

    Request body:
    {
        "customer_id": 12,
        "valid_until": "2026-12-01T00:00:00Z",   (optional, default +30 days)
        "notes": "...",
        "discount_bps": 500,                      (optional, or discount_flat_cents)
        "items": [{"description": "Brake pads", "quantity": 2, "unit_price_cents": 10000, "tax_bps": 1600}]
    }
    """
    try:
        quotation = quotation_service.create_quotation(
            g.org_id, g.current_user.id, request.get_json(silent=True)
        )
        return jsonify({"quotation": quotation.to_dict()}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create quotation")


@quotations_bp.get("")
@require_auth
def list_quotations_route():
    """
    Query params: status, search, customer_id, expired=true, limit, offset
    """
    try:
        limit, offset = parse_pagination(request.args)
        rows, total = quotation_service.list_quotations(
            g.org_id,
            status=request.args.get("status"),
            search=request.args.get("search"),
            customer_id=parse_optional_int(request.args, "customer_id"),
            expired_only=request.args.get("expired") == "true",
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "quotations": [q.to_dict(include_lines=False) for q in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to list quotations")


@quotations_bp.get("/summary")
@require_auth
def quotation_summary_route():
    try:
        return jsonify({"summary": quotation_service.get_quotation_summary(g.org_id)}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to build quotation summary")


@quotations_bp.get("/<int:quotation_id>")
@require_auth
def get_quotation_route(quotation_id: int):
    try:
        quotation = quotation_service.get_quotation(g.org_id, quotation_id)
        return jsonify({"quotation": quotation.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to load quotation")


@quotations_bp.patch("/<int:quotation_id>")
@require_auth
def update_quotation_route(quotation_id: int):
    """Patch customer_id, valid_until, notes (DRAFT/SENT only)."""
    try:
        quotation = quotation_service.update_quotation(
            g.org_id, g.current_user.id, quotation_id, request.get_json(silent=True)
        )
        return jsonify({"quotation": quotation.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update quotation")


@quotations_bp.delete("/<int:quotation_id>")
@require_auth
def delete_quotation_route(quotation_id: int):
    """Soft-delete a DRAFT quotation."""
    try:
        quotation_service.delete_quotation(g.org_id, g.current_user.id, quotation_id)
        return jsonify({"message": "Quotation deleted", "id": quotation_id}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to delete quotation")


# =============================================================================
# ITEMS AND DISCOUNT
# =============================================================================

@quotations_bp.post("/<int:quotation_id>/items")
@require_auth
def add_quotation_item_route(quotation_id: int):
    try:
        quotation = quotation_service.add_quotation_item(
            g.org_id, g.current_user.id, quotation_id, request.get_json(silent=True)
        )
        return jsonify({"quotation": quotation.to_dict()}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to add quotation item")


@quotations_bp.patch("/<int:quotation_id>/items/<int:item_id>")
@require_auth
def update_quotation_item_route(quotation_id: int, item_id: int):
    try:
        quotation = quotation_service.update_quotation_item(
            g.org_id, g.current_user.id, quotation_id, item_id, request.get_json(silent=True)
        )
        return jsonify({"quotation": quotation.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update quotation item")


@quotations_bp.delete("/<int:quotation_id>/items/<int:item_id>")
@require_auth
def delete_quotation_item_route(quotation_id: int, item_id: int):
    try:
        quotation = quotation_service.delete_quotation_item(
            g.org_id, g.current_user.id, quotation_id, item_id
        )
        return jsonify({"quotation": quotation.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to delete quotation item")


@quotations_bp.put("/<int:quotation_id>/discount")
@require_auth
def set_quotation_discount_route(quotation_id: int):
    """Body: {"discount_bps": 1000} or {"discount_flat_cents": 5000}; nulls clear."""
    try:
        quotation = quotation_service.set_quotation_discount(
            g.org_id, g.current_user.id, quotation_id, request.get_json(silent=True)
        )
        return jsonify({"quotation": quotation.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to set quotation discount")


# =============================================================================
# LIFECYCLE
# =============================================================================

@quotations_bp.post("/<int:quotation_id>/status")
@require_auth
def transition_quotation_route(quotation_id: int):
    """
    Body: {"status": "SENT" | "APPROVED" | "REJECTED" | "DRAFT", "valid_until": ...}

    valid_until is only read when reopening an EXPIRED quotation.
    """
    try:
        data = request.get_json(silent=True) or {}
        quotation = quotation_service.transition_quotation(
            g.org_id,
            g.current_user.id,
            quotation_id,
            data.get("status"),
            valid_until=parse_optional_datetime(data.get("valid_until"), "valid_until"),
        )
        return jsonify({"quotation": quotation.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to change quotation status")


@quotations_bp.post("/bulk-status")
@require_auth
def bulk_transition_quotations_route():
    """
    Body: {"quotation_ids": [1, 2, 3], "status": "SENT" | "APPROVED" | "REJECTED" | "DRAFT"}

    Each id is transitioned on its own; the response lists the ids that
    moved and, per failed id, the error a single transition would return.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        result = quotation_service.bulk_transition_quotations(
            g.org_id, g.current_user.id, data.get("quotation_ids"), data.get("status")
        )
        return jsonify(result), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to change quotation statuses")


@quotations_bp.get("/<int:quotation_id>/convert")
@require_auth
def check_quotation_conversion_route(quotation_id: int):
    """Dry run: can this quotation be converted right now?"""
    try:
        result = conversion_service.check_quotation_conversion(g.org_id, quotation_id)
        return jsonify(result), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to check quotation conversion")


@quotations_bp.post("/<int:quotation_id>/convert")
@require_auth
def convert_quotation_route(quotation_id: int):
    """
    Convert an APPROVED quotation into an ISSUED invoice.

    Body (optional): {"due_date": "2026-12-31T00:00:00Z"}
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice = conversion_service.convert_quotation(
            g.org_id,
            g.current_user.id,
            quotation_id,
            due_date=parse_optional_datetime(data.get("due_date"), "due_date"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to convert quotation")
