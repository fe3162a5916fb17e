# Overview: Domain error taxonomy shared by services and the HTTP layer.

"""
Engine errors.

Every condition a caller can recover from (retry, re-fetch, show a message)
is raised as an EngineError subclass. Each carries a stable `code`, the HTTP
status the API answers with, and structured `details` so the caller can act
on it without parsing the message.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for structured, caller-recoverable errors."""

    code = "engine_error"
    http_status = 400
    default_message = "Request could not be completed."

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(EngineError):
    """400-level input problem."""
    code = "validation_error"
    http_status = 400
    default_message = "Invalid input."


class NotFound(EngineError):
    code = "not_found"
    http_status = 404
    default_message = "Resource not found."


class Forbidden(EngineError):
    """Role, collection or ownership violation."""
    code = "forbidden"
    http_status = 403
    default_message = "You do not have permission to perform this action."


class VersionConflict(EngineError):
    """Caller's expected version does not match the stored version."""
    code = "version_conflict"
    http_status = 409

    def __init__(self, expected: int, actual: int | None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict: expected {expected}, got {actual}.",
            expected=expected,
            actual=actual,
        )


class RecordLocked(EngineError):
    code = "record_locked"
    http_status = 409
    default_message = "Cannot edit a completed record."


class DuplicatePending(EngineError):
    code = "duplicate_pending"
    http_status = 409
    default_message = "A pending change already exists for this field."


class StaleBase(EngineError):
    """The record moved on since the pending change was proposed."""
    code = "stale_base"
    http_status = 409

    def __init__(self, base_version: int, current_version: int, current_value: Any):
        self.base_version = base_version
        self.current_version = current_version
        self.current_value = current_value
        super().__init__(
            f"Record changed since the proposal (base version {base_version}, "
            f"current version {current_version}). Re-confirm against the current value.",
            base_version=base_version,
            current_version=current_version,
            current_value=current_value,
        )


class NotPending(EngineError):
    code = "not_pending"
    http_status = 409
    default_message = "Only pending changes can be resolved."


class Expired(EngineError):
    code = "expired"
    http_status = 410
    default_message = "This pending change has expired."


class NotDeleted(EngineError):
    code = "not_deleted"
    http_status = 409
    default_message = "Record is not deleted."


class RetentionExpired(EngineError):
    code = "retention_expired"
    http_status = 410
    default_message = "Record is past the recovery window."


class RateLimited(EngineError):
    code = "rate_limited"
    http_status = 429

    def __init__(self, remaining_minutes: int):
        self.remaining_minutes = remaining_minutes
        super().__init__(
            f"Too many failed attempts. Please try again after {remaining_minutes} minutes.",
            remaining_minutes=remaining_minutes,
        )


class CooldownActive(EngineError):
    """Re-proposal after a rejection inside the cooldown window."""
    code = "cooldown_active"
    http_status = 429

    def __init__(self, remaining_minutes: int):
        self.remaining_minutes = remaining_minutes
        super().__init__(
            f"This change was recently rejected. Please wait {remaining_minutes} minutes "
            "before proposing it again.",
            remaining_minutes=remaining_minutes,
        )


class AuthenticationFailed(EngineError):
    """
    Credential check failed.

    The message is always generic; `reason` is for logs only and is never
    serialized into the response.
    """
    code = "authentication_failed"
    http_status = 401
    default_message = "Invalid email or password."

    def __init__(self, reason: str = "invalid_credentials", **details: Any):
        self.reason = reason
        super().__init__(None, **details)


class Unavailable(EngineError):
    code = "unavailable"
    http_status = 503
    default_message = "The service is temporarily unavailable. Please retry."
