# Overview: In-process change feed for records and pending changes.

"""
Change feed.

Services queue a ChangeEvent on the active SQLAlchemy session while they
mutate; the events are dispatched through blinker signals only after the
surrounding transaction commits, and dropped if it rolls back. Subscribers
therefore never observe a change that did not reach the store.

Delivery is a convenience for readers (push). The same information is
available by polling record_service.changes_since(), and no engine invariant
depends on which of the two a reader uses.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator

from blinker import Namespace
from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_signals = Namespace()

# sender is the collection name ("orders", "costs", "pending_changes")
record_changed = _signals.signal("record-changed")
pending_changed = _signals.signal("pending-changed")

_QUEUE_KEY = "orderdesk.change_feed"


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    target_id: int
    kind: str  # created, updated, deleted, recovered, purged, proposed, approved, ...
    occurred_at: datetime
    version: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)


def queue(session: Session, signal, change: ChangeEvent) -> None:
    """Hold an event until the session's transaction commits."""
    session.info.setdefault(_QUEUE_KEY, []).append((signal, change))


@event.listens_for(Session, "after_commit")
def _dispatch_after_commit(session: Session) -> None:
    queued = session.info.pop(_QUEUE_KEY, [])
    for signal, change in queued:
        try:
            signal.send(change.collection, change=change)
        except Exception:
            # A broken subscriber must not turn a committed write into an error
            logger.exception("Change feed subscriber failed for %s %s", change.collection, change.target_id)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(_QUEUE_KEY, None)


@contextmanager
def capture() -> Iterator[list[ChangeEvent]]:
    """Collect every dispatched event while the block runs."""
    received: list[ChangeEvent] = []

    def _receiver(sender, change: ChangeEvent, **kwargs):
        received.append(change)

    record_changed.connect(_receiver)
    pending_changed.connect(_receiver)
    try:
        yield received
    finally:
        record_changed.disconnect(_receiver)
        pending_changed.disconnect(_receiver)
