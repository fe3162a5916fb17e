# backend/orderdesk/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///orderdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Password hashing cost; tests lower it
    BCRYPT_LOG_ROUNDS = _env_int("BCRYPT_LOG_ROUNDS", 12)

    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    )

    # Login guard
    RATE_LIMIT_WINDOW_MINUTES = _env_int("RATE_LIMIT_WINDOW_MINUTES", 15)
    RATE_LIMIT_MAX_ATTEMPTS = _env_int("RATE_LIMIT_MAX_ATTEMPTS", 5)
    LOGIN_CHALLENGE_THRESHOLD = _env_int("LOGIN_CHALLENGE_THRESHOLD", 3)
    # Throttle per identity + client address instead of per identity only
    RATE_LIMIT_PER_ORIGIN = os.environ.get("RATE_LIMIT_PER_ORIGIN", "0") == "1"

    # Session lifetime
    SESSION_IDLE_TIMEOUT_MINUTES = _env_int("SESSION_IDLE_TIMEOUT_MINUTES", 30)
    SESSION_ABSOLUTE_TIMEOUT_HOURS = _env_int("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    SESSION_REMEMBER_ME_DAYS = _env_int("SESSION_REMEMBER_ME_DAYS", 30)

    # Pending change workflow
    PENDING_EXPIRY_DAYS = _env_int("PENDING_EXPIRY_DAYS", 7)
    REJECTION_COOLDOWN_MINUTES = _env_int("REJECTION_COOLDOWN_MINUTES", 60)

    # Soft delete retention before permanent purge
    DELETED_RETENTION_DAYS = _env_int("DELETED_RETENTION_DAYS", 30)

    # Transient store failures (lock timeouts, deadlocks)
    TX_RETRY_ATTEMPTS = _env_int("TX_RETRY_ATTEMPTS", 3)
    TX_RETRY_BACKOFF_SECONDS = _env_float("TX_RETRY_BACKOFF_SECONDS", 0.1)

    SECURITY_EVENT_RETENTION_DAYS = _env_int("SECURITY_EVENT_RETENTION_DAYS", 90)


@dataclass(frozen=True)
class Policy:
    """Typed, read-only view of the tunable policy constants."""
    rate_limit_window: timedelta
    rate_limit_max_attempts: int
    login_challenge_threshold: int
    session_idle_timeout: timedelta
    session_absolute_timeout: timedelta
    session_remember_me_timeout: timedelta
    pending_expiry: timedelta
    rejection_cooldown: timedelta
    deleted_retention: timedelta
    tx_retry_attempts: int
    tx_retry_backoff_seconds: float

    @classmethod
    def from_config(cls, config: Mapping) -> "Policy":
        return cls(
            rate_limit_window=timedelta(minutes=config.get("RATE_LIMIT_WINDOW_MINUTES", 15)),
            rate_limit_max_attempts=config.get("RATE_LIMIT_MAX_ATTEMPTS", 5),
            login_challenge_threshold=config.get("LOGIN_CHALLENGE_THRESHOLD", 3),
            session_idle_timeout=timedelta(minutes=config.get("SESSION_IDLE_TIMEOUT_MINUTES", 30)),
            session_absolute_timeout=timedelta(hours=config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)),
            session_remember_me_timeout=timedelta(days=config.get("SESSION_REMEMBER_ME_DAYS", 30)),
            pending_expiry=timedelta(days=config.get("PENDING_EXPIRY_DAYS", 7)),
            rejection_cooldown=timedelta(minutes=config.get("REJECTION_COOLDOWN_MINUTES", 60)),
            deleted_retention=timedelta(days=config.get("DELETED_RETENTION_DAYS", 30)),
            tx_retry_attempts=config.get("TX_RETRY_ATTEMPTS", 3),
            tx_retry_backoff_seconds=config.get("TX_RETRY_BACKOFF_SECONDS", 0.1),
        )


DEFAULT_POLICY = Policy.from_config({})


def current_policy() -> Policy:
    """Policy for the active app; defaults outside an app context."""
    from flask import current_app, has_app_context

    if has_app_context():
        return Policy.from_config(current_app.config)
    return DEFAULT_POLICY
