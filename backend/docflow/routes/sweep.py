# Overview: Flask API route that runs the expiry/overdue sweep for the caller's tenant.

from flask import Blueprint, jsonify, g

from ..decorators import require_auth
from ..errors import DocumentError, error_response, internal_error_response
from ..services import sweep_service


sweep_bp = Blueprint("sweep", __name__, url_prefix="/api/sweep")


@sweep_bp.post("/run")
@require_auth
def run_sweep_route():
    """
    Expire stale quotations and mark past-due invoices OVERDUE.

    Scoped to the caller's organization. Safe to call repeatedly.
    """
    try:
        result = sweep_service.run_sweep(org_id=g.org_id)
        return jsonify(result.to_dict()), 200
    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Sweep failed")
