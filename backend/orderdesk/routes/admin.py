# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/orderdesk/routes/admin.py
"""
Admin routes for column metadata, role permissions and the audit trail.

Column and permission reads are open to every signed-in user (the client
needs them to render the sheet); writes and the audit log are super_admin only.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import EngineError, ValidationError
from ..permissions import Roles
from ..services import audit_service, column_service
from ..validation import require_int
from ..decorators import error_response, require_auth, require_role

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


# =============================================================================
# COLUMNS
# =============================================================================

@admin_bp.get("/columns")
@require_auth
def list_columns_route():
    return jsonify({"columns": [c.to_dict() for c in column_service.list_columns()]}), 200


@admin_bp.post("/columns")
@require_auth
@require_role(Roles.SUPER_ADMIN)
def create_column_route():
    """Request: {"key", "label", "type", "display_order"?, "options"?, "is_data_related"?}"""
    try:
        data = _json_body()
        column = column_service.create_column(
            g.current_user,
            key=data.get("key"),
            label=data.get("label"),
            type=data.get("type"),
            display_order=data.get("display_order"),
            options=data.get("options"),
            is_data_related=bool(data.get("is_data_related", False)),
        )
        return jsonify({"column": column.to_dict()}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create column")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.patch("/columns/<key>")
@require_auth
@require_role(Roles.SUPER_ADMIN)
def update_column_route(key: str):
    """Request: {"version": int, "changes": {...}}"""
    try:
        data = _json_body()
        changes = data.get("changes")
        if not isinstance(changes, dict):
            raise ValidationError("changes must be an object", field="changes")
        column = column_service.update_column(
            key, changes, g.current_user, require_int(data.get("version"), "version")
        )
        return jsonify({"column": column.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update column")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/columns/<key>")
@require_auth
@require_role(Roles.SUPER_ADMIN)
def delete_column_route(key: str):
    try:
        column_service.delete_column(key, g.current_user)
        return jsonify({"message": f"Column {key} deleted"}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete column")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ROLE PERMISSIONS
# =============================================================================

@admin_bp.get("/role-permissions")
@require_auth
def list_role_permissions_route():
    return jsonify({"roles": [r.to_dict() for r in column_service.get_role_permissions()]}), 200


@admin_bp.put("/role-permissions/<role>")
@require_auth
@require_role(Roles.SUPER_ADMIN)
def update_role_permissions_route(role: str):
    """Request: {"permissions": {column_key: {...}}, "version": int?}"""
    try:
        data = _json_body()
        version = data.get("version")
        row = column_service.update_role_permissions(
            role,
            data.get("permissions"),
            g.current_user,
            expected_version=require_int(version, "version") if version is not None else None,
        )
        return jsonify({"role": row.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update role permissions")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# AUDIT LOG
# =============================================================================

@admin_bp.get("/audit-logs")
@require_auth
@require_role(Roles.SUPER_ADMIN)
def list_audit_logs_route():
    """
    Query params: target_collection, target_id, actor_user_id, action,
    limit (max 500), offset
    """
    try:
        limit = min(request.args.get("limit", 100, type=int), 500)
        entries = audit_service.list_entries(
            target_collection=request.args.get("target_collection") or None,
            target_id=request.args.get("target_id") or None,
            actor_user_id=request.args.get("actor_user_id", type=int),
            action=request.args.get("action") or None,
            limit=limit,
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"entries": [e.to_dict() for e in entries]}), 200
    except Exception:
        current_app.logger.exception("Failed to list audit logs")
        return jsonify({"error": "Internal server error"}), 500
