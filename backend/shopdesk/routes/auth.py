# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/shopdesk/routes/auth.py
"""
Authentication API routes

Login issues an opaque bearer token; every other API route expects it in
the Authorization header. Accounts are created by administrators through the
CLI, there is no self-registration.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..permissions import get_role_permissions
from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Body: {username (or email), password, org_id?}
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")
        org_id = data.get("org_id")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password, org_id=org_id)
        if not user:
            current_app.logger.info("Failed login for %s from %s", username, request.remote_addr)
            return jsonify({"error": "Invalid credentials"}), 401

        _, token = session_service.create_session(
            user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "permissions": sorted(get_role_permissions(user.role)),
            "token": token,
        }), 200

    except ValueError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to log in")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization", "").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"status": "logged_out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "org_id": g.org_id,
        "store_id": g.store_id,
        "permissions": sorted(get_role_permissions(g.current_user.role)),
    }), 200
