# Overview: Flask API routes for pending changes; parses input and returns JSON responses.

"""
Pending change API routes

- GET  /api/pendings                      list (?status=pending, ?mine=1)
- GET  /api/pendings/count                open entries visible to the caller
- GET  /api/pendings/<id>                 one entry
- POST /api/pendings                      propose
- POST /api/pendings/<id>/approve         apply (manager, super_admin)
- POST /api/pendings/<id>/reject          reject (manager, super_admin)
- POST /api/pendings/<id>/withdraw        withdraw (requester only)

SECURITY:
- Reviewer and requester identities come from the session
- Non-reviewers only see their own entries
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import EngineError, ValidationError
from ..services import pending_service
from ..validation import require_int
from ..decorators import error_response, require_auth


pendings_bp = Blueprint("pendings", __name__, url_prefix="/api/pendings")


@pendings_bp.get("")
@require_auth
def list_pendings_route():
    try:
        items = pending_service.list_pendings(
            g.current_user,
            status=request.args.get("status") or None,
            mine_only=request.args.get("mine") in ("1", "true"),
        )
        return jsonify({"pendings": [p.to_dict() for p in items], "count": len(items)}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list pending changes")
        return jsonify({"error": "Internal server error"}), 500


@pendings_bp.get("/count")
@require_auth
def unread_count_route():
    return jsonify({"count": pending_service.unread_count(g.current_user)}), 200


@pendings_bp.get("/<int:pending_id>")
@require_auth
def get_pending_route(pending_id: int):
    try:
        return jsonify({"pending": pending_service.get_pending(pending_id, g.current_user).to_dict()}), 200
    except EngineError as e:
        return error_response(e)


@pendings_bp.post("")
@require_auth
def propose_route():
    """
    Request: {"target_collection", "target_id", "field", "base_value",
              "base_version", "new_value"}
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("JSON object body required")
        for key in ("target_collection", "target_id", "field", "base_version"):
            if data.get(key) is None:
                raise ValidationError(f"{key} is required", field=key)
        if "new_value" not in data:
            raise ValidationError("new_value is required", field="new_value")

        pending = pending_service.propose(
            data["target_collection"],
            require_int(data["target_id"], "target_id"),
            data["field"],
            data.get("base_value"),
            require_int(data["base_version"], "base_version"),
            data["new_value"],
            g.current_user,
        )
        return jsonify({"pending": pending.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to propose pending change")
        return jsonify({"error": "Internal server error"}), 500


@pendings_bp.post("/<int:pending_id>/approve")
@require_auth
def approve_route(pending_id: int):
    """
    Request (optional): {"acknowledged_version": int}

    Error responses:
        409 stale_base: record changed since the proposal; details carry the
            current value and version to re-confirm with acknowledged_version
        409 not_pending: already resolved
        410 expired: past expires_at (the entry is now expired)
    """
    try:
        data = request.get_json(silent=True) or {}
        acknowledged = data.get("acknowledged_version")
        pending = pending_service.approve(
            pending_id,
            g.current_user,
            acknowledged_version=require_int(acknowledged, "acknowledged_version") if acknowledged is not None else None,
        )
        return jsonify({"pending": pending.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve pending change")
        return jsonify({"error": "Internal server error"}), 500


@pendings_bp.post("/<int:pending_id>/reject")
@require_auth
def reject_route(pending_id: int):
    try:
        pending = pending_service.reject(pending_id, g.current_user)
        return jsonify({"pending": pending.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject pending change")
        return jsonify({"error": "Internal server error"}), 500


@pendings_bp.post("/<int:pending_id>/withdraw")
@require_auth
def withdraw_route(pending_id: int):
    try:
        pending = pending_service.withdraw(pending_id, g.current_user)
        return jsonify({"pending": pending.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to withdraw pending change")
        return jsonify({"error": "Internal server error"}), 500
