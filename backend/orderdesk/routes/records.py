# Overview: Flask API routes for orders and costs; parses input and returns JSON responses.

"""
Record API routes (orders and costs share one blueprint)

- GET    /api/<collection>                       list (?month=YYYY-MM, ?deleted=1)
- GET    /api/<collection>/changes?since=ISO     poll for changes
- GET    /api/<collection>/<id>                  one record
- POST   /api/<collection>                       create
- PATCH  /api/<collection>/<id>/fields/<field>   edit one field (direct or via approval)
- POST   /api/<collection>/<id>/status           change status
- DELETE /api/<collection>/<id>                  soft delete (voids open pending changes)
- POST   /api/<collection>/<id>/recover          undo soft delete
- DELETE /api/<collection>/<id>/purge            permanent delete past retention

SECURITY:
- All routes require authentication
- The actor is always the session user, never taken from the request body
- Costs are refused to sales roles before anything else is evaluated
- Responses only carry the fields the role may see
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import EngineError, ValidationError
from ..services import mutation_service
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from ..validation import require_int
from ..decorators import error_response, require_auth


records_bp = Blueprint("records", __name__, url_prefix="/api")

COLLECTION = "<any(orders, costs):collection>"


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


@records_bp.get(f"/{COLLECTION}")
@require_auth
def list_records_route(collection: str):
    try:
        records = mutation_service.list_records(
            collection,
            g.current_user,
            month=request.args.get("month") or None,
            deleted=request.args.get("deleted") in ("1", "true"),
        )
        return jsonify({"records": records, "count": len(records)}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list %s", collection)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.get(f"/{COLLECTION}/changes")
@require_auth
def changes_route(collection: str):
    """
    Poll read for clients that missed change notifications.

    Returns the records touched after ?since plus a cursor for the next poll.
    """
    try:
        try:
            since = parse_iso_datetime(request.args.get("since"))
        except ValueError:
            raise ValidationError("since must be an ISO-8601 datetime", field="since")
        if since is None:
            raise ValidationError("since is required", field="since")

        cursor = utcnow()
        changes = mutation_service.changes_since(
            collection, since, g.current_user, month=request.args.get("month") or None
        )
        return jsonify({"changes": changes, "cursor": to_utc_z(cursor)}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to read %s changes", collection)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.get(f"/{COLLECTION}/<int:record_id>")
@require_auth
def get_record_route(collection: str, record_id: int):
    try:
        return jsonify({"record": mutation_service.get_record(collection, record_id, g.current_user)}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get %s record", collection)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.post(f"/{COLLECTION}")
@require_auth
def create_record_route(collection: str):
    """
    Request: {"fields": {...}, "month": "YYYY-MM"?, "status": "active"?, "order_id": int?}
    """
    try:
        data = _json_body()
        order_id = data.get("order_id")
        record = mutation_service.create_record(
            collection,
            data.get("fields") or {},
            g.current_user,
            month=data.get("month"),
            status=data.get("status") or "active",
            order_id=require_int(order_id, "order_id") if order_id is not None else None,
        )
        return jsonify({"record": mutation_service.project(record, g.current_user.role)}), 201
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create %s record", collection)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.patch(f"/{COLLECTION}/<int:record_id>/fields/<field>")
@require_auth
def edit_field_route(collection: str, record_id: int, field: str):
    """
    Request: {"value": ..., "version": int}

    200 with applied=true when written; 202 with the pending change when the
    role needs approval for this field.

    Error responses:
        403: Role may not change the field / collection
        404: Record not found or deleted
        409: Version conflict, record completed, or duplicate pending change
        429: Field was rejected recently (cooldown)
    """
    try:
        data = _json_body()
        if "value" not in data:
            raise ValidationError("value is required", field="value")
        outcome = mutation_service.edit_field(
            collection,
            record_id,
            field,
            data["value"],
            require_int(data.get("version"), "version"),
            g.current_user,
        )
        return jsonify(outcome.to_dict()), 200 if outcome.applied else 202
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update %s field", collection)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.post(f"/{COLLECTION}/<int:record_id>/status")
@require_auth
def change_status_route(collection: str, record_id: int):
    """Request: {"status": "active|completed|cancelled", "version": int}"""
    try:
        data = _json_body()
        version = mutation_service.change_status(
            collection,
            record_id,
            data.get("status"),
            require_int(data.get("version"), "version"),
            g.current_user,
        )
        return jsonify({"version": version}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change %s status", collection)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.delete(f"/{COLLECTION}/<int:record_id>")
@require_auth
def delete_record_route(collection: str, record_id: int):
    try:
        version, voided = mutation_service.delete_record(collection, record_id, g.current_user)
        return jsonify({"version": version, "voided_pending_changes": voided}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete %s record", collection)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.post(f"/{COLLECTION}/<int:record_id>/recover")
@require_auth
def recover_record_route(collection: str, record_id: int):
    try:
        version = mutation_service.recover_record(collection, record_id, g.current_user)
        return jsonify({"version": version}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to recover %s record", collection)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.delete(f"/{COLLECTION}/<int:record_id>/purge")
@require_auth
def purge_record_route(collection: str, record_id: int):
    try:
        mutation_service.purge_record(collection, record_id, g.current_user)
        return jsonify({"message": "Record permanently deleted"}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to purge %s record", collection)
        return jsonify({"error": "Internal server error"}), 500
