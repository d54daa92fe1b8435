# Overview: Flask API routes for invoices and their payments.

# backend/docflow/routes/invoices.py
"""
Invoice and Payment API Routes

DESIGN:
- Invoice status in responses is the status seen on read (OVERDUE is
  computed against the current clock)
- Payment endpoints return the invoice in its new state plus the payment
  summary
- Idempotency-Key header (or idempotency_key in the body) makes
  POST /payments safe to retry
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..errors import DocumentError, ValidationError, error_response, internal_error_response
from ..models import Payment
from ..services import invoice_service, payment_service
from ..validation import (
    PAYMENT_POLICY,
    parse_optional_datetime,
    parse_optional_int,
    parse_pagination,
    validate_payload,
)


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


# =============================================================================
# CREATE / READ
# =============================================================================

@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """
    Create a DRAFT invoice.

    Request body:
    {
        "customer_id": 12,
        "due_date": "2026-12-31T00:00:00Z",   (optional, default +30 days)
        "notes": "...",
        "items": [...]                         (optional)
    }
    """
    try:
        invoice = invoice_service.create_invoice(
            g.org_id, g.current_user.id, request.get_json(silent=True)
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create invoice")


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """Query params: status (OVERDUE computed on read), search, customer_id, limit, offset"""
    try:
        limit, offset = parse_pagination(request.args)
        rows, total = invoice_service.list_invoices(
            g.org_id,
            status=request.args.get("status"),
            search=request.args.get("search"),
            customer_id=parse_optional_int(request.args, "customer_id"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "invoices": [i.to_dict(include_lines=False) for i in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to list invoices")


@invoices_bp.get("/summary")
@require_auth
def invoice_summary_route():
    """Query params: customer_id (optional)"""
    try:
        summary = invoice_service.get_invoice_summary(
            g.org_id, customer_id=parse_optional_int(request.args, "customer_id")
        )
        return jsonify({"summary": summary}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to build invoice summary")


@invoices_bp.get("/payment-stats")
@require_auth
def payment_stats_route():
    """Query params: start, end (ISO-8601, inclusive on paid_at), customer_id"""
    try:
        stats = payment_service.get_payment_stats(
            g.org_id,
            parse_optional_datetime(request.args.get("start"), "start"),
            parse_optional_datetime(request.args.get("end"), "end"),
            customer_id=parse_optional_int(request.args, "customer_id"),
        )
        return jsonify({"stats": stats}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to build payment statistics")


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.org_id, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to load invoice")


@invoices_bp.patch("/<int:invoice_id>")
@require_auth
def update_invoice_route(invoice_id: int):
    """Patch customer_id, due_date, notes."""
    try:
        invoice = invoice_service.update_invoice(
            g.org_id, g.current_user.id, invoice_id, request.get_json(silent=True)
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update invoice")


# =============================================================================
# ITEMS AND DISCOUNT
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/items")
@require_auth
def add_invoice_item_route(invoice_id: int):
    try:
        invoice = invoice_service.add_invoice_item(
            g.org_id, g.current_user.id, invoice_id, request.get_json(silent=True)
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to add invoice item")


@invoices_bp.patch("/<int:invoice_id>/items/<int:item_id>")
@require_auth
def update_invoice_item_route(invoice_id: int, item_id: int):
    try:
        invoice = invoice_service.update_invoice_item(
            g.org_id, g.current_user.id, invoice_id, item_id, request.get_json(silent=True)
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update invoice item")


@invoices_bp.delete("/<int:invoice_id>/items/<int:item_id>")
@require_auth
def delete_invoice_item_route(invoice_id: int, item_id: int):
    try:
        invoice = invoice_service.delete_invoice_item(g.org_id, g.current_user.id, invoice_id, item_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to delete invoice item")


@invoices_bp.put("/<int:invoice_id>/discount")
@require_auth
def set_invoice_discount_route(invoice_id: int):
    try:
        invoice = invoice_service.set_invoice_discount(
            g.org_id, g.current_user.id, invoice_id, request.get_json(silent=True)
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to set invoice discount")


# =============================================================================
# LIFECYCLE
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/issue")
@require_auth
def issue_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.issue_invoice(g.org_id, g.current_user.id, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to issue invoice")


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
def cancel_invoice_route(invoice_id: int):
    """Body (optional): {"reason": "..."}. Recorded payments are kept."""
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        invoice = invoice_service.cancel_invoice(
            g.org_id, g.current_user.id, invoice_id, reason=data.get("reason")
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to cancel invoice")


# =============================================================================
# PAYMENTS
# =============================================================================

@invoices_bp.get("/<int:invoice_id>/payments")
@require_auth
def list_invoice_payments_route(invoice_id: int):
    try:
        summary = payment_service.get_payment_summary(g.org_id, invoice_id)
        return jsonify({"payments": summary.pop("payments"), "summary": summary}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to list payments")


@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
def record_payment_route(invoice_id: int):
    """
    Record a payment against an invoice.

    Request body:
    {
        "amount_cents": 10000,
        "method": "CASH" | "CARD" | "TRANSFER" | "CHECK" | "OTHER",
        "paid_at": "2026-10-01T12:00:00Z",    (optional, default now)
        "reference": "AUTH-12345",             (optional)
        "notes": "...",                        (optional)
        "idempotency_key": "..."               (optional, or Idempotency-Key header)
    }

    Returns:
        201: {"invoice": {...}, "summary": {...}}
    """
    try:
        data = dict(request.get_json(silent=True) or {})
        header_key = request.headers.get("Idempotency-Key")
        if header_key and "idempotency_key" not in data:
            data["idempotency_key"] = header_key

        patch = validate_payload(model=Payment, payload=data, policy=PAYMENT_POLICY, partial=False)
        invoice = payment_service.record_payment(
            g.org_id,
            g.current_user.id,
            invoice_id,
            patch["amount_cents"],
            patch["method"],
            paid_at=patch.get("paid_at"),
            reference=patch.get("reference"),
            notes=patch.get("notes"),
            idempotency_key=patch.get("idempotency_key"),
        )
        summary = payment_service.get_payment_summary(g.org_id, invoice.id)
        summary.pop("payments")
        return jsonify({"invoice": invoice.to_dict(), "summary": summary}), 201
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to record payment")


@invoices_bp.delete("/<int:invoice_id>/payments/<int:payment_id>")
@require_auth
def delete_payment_route(invoice_id: int, payment_id: int):
    """Corrective deletion; the invoice is re-derived from the remaining payments."""
    try:
        invoice = payment_service.delete_payment(g.org_id, g.current_user.id, invoice_id, payment_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to delete payment")
