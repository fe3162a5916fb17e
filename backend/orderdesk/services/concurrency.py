# Overview: Transaction runner shared by every mutating service.

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

from ..config import current_policy
from ..errors import Unavailable
from ..extensions import db

logger = logging.getLogger(__name__)

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_in_transaction(
    func: Callable[[], T],
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
) -> T:
    """
    Execute func and commit its work as one transaction.

    Transient store failures (OperationalError: lock timeouts, deadlocks,
    dropped connections) are retried with exponential backoff and surface as
    Unavailable once the attempts are spent. Any other exception rolls the
    whole unit back and propagates unchanged: domain conflicts such as
    VersionConflict are the caller's to handle, never retried here.
    """
    policy = current_policy()
    if attempts is None:
        attempts = policy.tx_retry_attempts
    if backoff_base is None:
        backoff_base = policy.tx_retry_backoff_seconds

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Transaction failed after %d attempts: %s", attempts, exc)
                raise Unavailable() from exc
            logger.warning("Transient store failure (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise Unavailable()


def transactional(func: Callable[[], T], *, commit: bool = True) -> T:
    """
    Run func in its own transaction, or inside the caller's when commit=False.

    commit=False lets a service compose several operations (soft delete plus
    voiding pending changes, approval plus field update) into one commit.
    """
    if commit:
        return run_in_transaction(func)
    return func()
