# backend/orderdesk/routes/system.py
"""
System health endpoint.

Checks the store, the seeded metadata the permission resolver depends on,
and whether the periodic jobs are keeping up.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import ColumnDefinition, Cost, Order, PendingChange, RolePermission, SessionToken, User
from ..models.workflow import PENDING
from ..permissions import ALL_ROLES
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def _timed(check) -> dict:
    start_time = time.time()
    try:
        result = check()
    except Exception:
        current_app.logger.exception("Health check %s failed", check.__name__)
        result = {"status": "unhealthy", "error": "Check failed"}
    result["latency_ms"] = round((time.time() - start_time) * 1000, 2)
    return result


def check_database_health() -> dict:
    """Database connectivity and basic table access."""
    return {
        "status": "healthy",
        "details": {
            "orders": db.session.query(Order).filter(Order.deleted_at.is_(None)).count(),
            "costs": db.session.query(Cost).filter(Cost.deleted_at.is_(None)).count(),
            "users": db.session.query(User).count(),
            "active_sessions": db.session.query(SessionToken).filter_by(is_revoked=False).count(),
        },
    }


def check_metadata_health() -> dict:
    """Columns and role permission maps must be seeded for any access to work."""
    column_count = db.session.query(ColumnDefinition).count()
    seeded_roles = {role for (role,) in db.session.query(RolePermission.role).all()}
    missing_roles = [role for role in ALL_ROLES if role not in seeded_roles]

    if column_count == 0 or missing_roles:
        return {
            "status": "degraded",
            "warning": "Run 'flask system init' to seed columns and role permissions",
            "details": {"columns": column_count, "missing_roles": missing_roles},
        }
    return {"status": "healthy", "details": {"columns": column_count}}


def check_workflow_health() -> dict:
    """Open pending changes past expiry mean the expiry sweep is not running."""
    overdue = db.session.query(PendingChange).filter(
        PendingChange.status == PENDING,
        PendingChange.expires_at <= utcnow(),
    ).count()
    open_count = db.session.query(PendingChange).filter(PendingChange.status == PENDING).count()

    details = {"open_pending_changes": open_count, "overdue_pending_changes": overdue}
    if overdue:
        return {
            "status": "degraded",
            "warning": "Run 'flask maintenance expire-pendings'",
            "details": details,
        }
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": _timed(check_database_health),
        "metadata": _timed(check_metadata_health),
        "workflow": _timed(check_workflow_health),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
