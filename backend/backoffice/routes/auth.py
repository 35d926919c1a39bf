# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/backoffice/routes/auth.py
"""
Authentication API routes.

Accounts are created by an owner through the CLI (`flask users create`);
there is no self-registration.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..responses import internal_error
from ..services import auth_service
from ..services import session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"message": "Invalid JSON payload"}), 400
        username = data.get("username")
        password = data.get("password")

        if not username or not password:
            return jsonify({
                "message": "username and password required",
                "errors": [
                    {"field": f, "message": f"{f} is required"}
                    for f in ("username", "password") if not data.get(f)
                ],
            }), 400

        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"message": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
        }), 200

    except Exception as e:
        return internal_error("Failed to log in", e)


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
