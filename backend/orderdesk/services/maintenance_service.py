# Overview: Service-layer operations for maintenance; periodic, idempotent cleanup jobs.

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..errors import EngineError
from ..extensions import db
from ..models import SecurityEvent
from ..permissions import RECORD_COLLECTIONS
from ..time_utils import utcnow
from . import login_throttle_service, pending_service, record_service, session_service

logger = logging.getLogger(__name__)


def expire_pending_changes(now: datetime | None = None) -> int:
    return pending_service.expire_sweep(now)


def purge_expired_records(now: datetime | None = None) -> dict[str, int]:
    """
    Permanently delete soft-deleted records past retention.

    Each purge runs in its own transaction; a record that was recovered or
    purged by a concurrent run in the meantime is skipped.
    """
    purged = {}
    for collection in RECORD_COLLECTIONS:
        count = 0
        for record_id in record_service.purgeable_ids(collection, now):
            try:
                record_service.purge(collection, record_id)
                count += 1
            except EngineError as exc:
                logger.info("Skipped purge of %s %s: %s", collection, record_id, exc.code)
        purged[collection] = count
    if any(purged.values()):
        logger.info("Purged records past retention: %s", purged)
    return purged


def cleanup_sessions() -> int:
    return session_service.cleanup_expired_sessions()


def cleanup_login_attempts() -> int:
    return login_throttle_service.cleanup_login_attempts()


def cleanup_security_events(*, retention_days: int = 90) -> int:
    """Delete security events older than retention_days."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
