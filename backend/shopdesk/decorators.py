# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .permissions import has_permission
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'org_id')


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.org_id: The organization ID (tenant context)
    - g.store_id: The user's store ID (may be None for org-level users)
    - g.session_context: The full SessionContext object

    Returns 401 for a missing, invalid, expired or revoked token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.org_id = context.org_id
        g.store_id = context.store_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission for the authenticated user's role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if not has_permission(user, permission_code):
                current_app.logger.info(
                    "Permission denied: user=%s role=%s permission=%s path=%s",
                    user.id,
                    user.role,
                    permission_code,
                    request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": f"Role '{user.role}' lacks {permission_code}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
