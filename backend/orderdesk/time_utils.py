from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from flask import current_app, has_app_context


class Clock:
    """
    Wall-clock source for every policy decision (expiry, lockout, retention).

    Registered on the app as app.extensions["clock"] so tests can swap in a
    FrozenClock without patching module globals.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def init_app(self, app) -> None:
        app.extensions["clock"] = self


class FrozenClock(Clock):
    """Manually advanced clock for tests and replay tooling."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or Clock.now(self)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    if has_app_context():
        clock = current_app.extensions.get("clock")
        if clock is not None:
            return clock.now()
    return Clock().now()


def current_month() -> str:
    """YYYY-MM for the clock's current instant."""
    return utcnow().strftime("%Y-%m")


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
