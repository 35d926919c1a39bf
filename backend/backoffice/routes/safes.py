# Overview: Flask API routes for safes and their ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_owner
from ..errors import ServiceError
from ..extensions import db
from ..responses import error_response, internal_error
from ..services import safe_service
from ..validation import ConflictError, ValidationError


safes_bp = Blueprint("safes", __name__, url_prefix="/api/safes")


@safes_bp.get("")
@require_auth
def list_safes_route():
    safes = safe_service.list_safes(include_inactive=request.args.get("include_inactive") != "false")
    return jsonify({"items": [s.to_dict() for s in safes], "count": len(safes)}), 200


@safes_bp.post("")
@require_auth
@require_owner
def create_safe_route():
    try:
        safe = safe_service.create_safe(request.get_json(silent=True))
        return jsonify({"safe": safe.to_dict()}), 201
    except (ValidationError, ConflictError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to create safe", e)


@safes_bp.get("/transactions")
@require_auth
def list_all_transactions_route():
    txs = safe_service.list_transactions(
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id"),
    )
    return jsonify({"items": [tx.to_dict() for tx in txs], "count": len(txs)}), 200


@safes_bp.get("/<int:safe_id>")
@require_auth
def get_safe_route(safe_id: int):
    try:
        return jsonify({"safe": safe_service.get_safe(safe_id).to_dict()}), 200
    except ServiceError as e:
        return error_response(e)


@safes_bp.patch("/<int:safe_id>")
@require_auth
@require_owner
def update_safe_route(safe_id: int):
    try:
        safe = safe_service.update_safe(safe_id, request.get_json(silent=True))
        return jsonify({"safe": safe.to_dict()}), 200
    except (ValidationError, ConflictError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to update safe", e)


@safes_bp.delete("/<int:safe_id>")
@require_auth
@require_owner
def delete_safe_route(safe_id: int):
    try:
        safe_service.delete_safe(safe_id)
        return jsonify({"message": "Safe deleted", "safe_id": safe_id}), 200
    except (ConflictError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to delete safe", e)


@safes_bp.get("/<int:safe_id>/transactions")
@require_auth
def list_safe_transactions_route(safe_id: int):
    try:
        txs = safe_service.list_transactions(safe_id=safe_id)
        return jsonify({"items": [tx.to_dict() for tx in txs], "count": len(txs)}), 200
    except ServiceError as e:
        return error_response(e)


@safes_bp.post("/<int:safe_id>/transactions")
@require_auth
@require_owner
def create_safe_transaction_route(safe_id: int):
    """
    Manual movement.

    Body: type, amount_usd_cents?, amount_lyd_cents?, description?, exchange_rate?
    """
    try:
        tx = safe_service.record_manual_transaction(safe_id, request.get_json(silent=True), g.current_user.id)
        return jsonify({"transaction": tx.to_dict()}), 201
    except (ValidationError, ServiceError) as e:
        db.session.rollback()
        return error_response(e)
    except Exception as e:
        db.session.rollback()
        return internal_error("Failed to record safe transaction", e)
