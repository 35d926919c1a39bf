# Overview: JSON error responses shared by the route modules.

from flask import current_app, jsonify

from .errors import ServiceError
from .validation import ValidationError, ConflictError


def error_response(exc: Exception):
    """Map a known domain/validation exception to its JSON response."""
    if isinstance(exc, ValidationError):
        return jsonify(exc.to_dict()), 400
    if isinstance(exc, ConflictError):
        return jsonify({"message": str(exc)}), 409
    if isinstance(exc, ServiceError):
        return jsonify(exc.to_dict()), exc.status_code
    raise TypeError(f"Unmapped exception type: {type(exc).__name__}")


def internal_error(log_message: str, exc: Exception):
    """
    Log an unexpected failure and answer 500.

    The exception text is only returned when EXPOSE_ERRORS is set
    (everywhere but production).
    """
    current_app.logger.exception(log_message)
    if current_app.config.get("EXPOSE_ERRORS"):
        message = str(exc) or "Internal server error"
    else:
        message = "Internal server error"
    return jsonify({"message": message}), 500
