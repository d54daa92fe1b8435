# Overview: Flask API routes for session login/logout.

"""
Authentication API routes

Users are created by administrators (CLI: flask system init / flask users
create); there is no self-registration.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..errors import DocumentError, error_response, internal_error_response
from ..services import auth_service
from ..services import session_service
from docflow.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request body:
    {
        "username": "admin",        (or email)
        "password": "...",
        "org_code": "ACME"          (optional, scopes the lookup)
    }

    Returns:
        200: {"token": ..., "user": {...}, "expires_at": ...}
        400: missing fields
        401: invalid credentials
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password, org_code=data.get("org_code"))
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "token": token,
            "user": user.to_dict(),
            "org_id": session.org_id,
            "expires_at": to_utc_z(session.expires_at),
        }), 200

    except DocumentError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Login failed")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization", "").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict(), "org_id": g.org_id}), 200
