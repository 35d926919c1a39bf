# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"message": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"message": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the authenticated user to hold one of the given roles.

    Must be stacked below @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"message": "Authentication required"}), 401

            if g.current_user.role not in roles:
                return jsonify({
                    "message": "Permission denied",
                    "details": {"required_roles": list(roles)},
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


require_owner = require_role("owner")
require_product_management = require_role("owner", "stock_manager")
