from __future__ import annotations

import math
import re
from datetime import date
from typing import Any

from .errors import ValidationError
from .permissions import COLUMN_TYPES, RECORD_STATUSES


MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
COLUMN_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,63}$")

# Free text cells are capped to keep a single record row bounded
MAX_TEXT_LENGTH = 2000

# Numbers beyond this are rejected as nonsensical spreadsheet input
MAX_NUMBER_ABS = 1_000_000_000_000


def validate_month(value: Any) -> str:
    if not isinstance(value, str) or not MONTH_PATTERN.match(value):
        raise ValidationError("month must be formatted as YYYY-MM", field="month")
    return value


def validate_status(value: Any) -> str:
    if value not in RECORD_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(RECORD_STATUSES)}",
            field="status",
        )
    return value


def validate_column_key(value: Any) -> str:
    if not isinstance(value, str) or not COLUMN_KEY_PATTERN.match(value):
        raise ValidationError(
            "column key must start with a letter and contain only lowercase letters, digits and underscores",
            field="key",
        )
    return value


def validate_column_type(value: Any) -> str:
    if value not in COLUMN_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(COLUMN_TYPES)}", field="type")
    return value


def _coerce_number(key: str, value: Any):
    # bool is an int subclass; a checkbox value is never a quantity
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", field=key)

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be a number", field=key)
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain number (scientific notation not allowed)", field=key)
        try:
            value = int(stripped) if "." not in stripped else float(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be a number", field=key)

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationError(f"{key} must be a finite number", field=key)
        if abs(value) > MAX_NUMBER_ABS:
            raise ValidationError(f"{key} is out of range", field=key)
        return value

    raise ValidationError(f"{key} must be a number", field=key)


def _coerce_date(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a date (YYYY-MM-DD)", field=key)
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError:
        raise ValidationError(f"{key} must be a date (YYYY-MM-DD)", field=key)


def coerce_field_value(column, value: Any) -> Any:
    """
    Normalize a cell value according to its column definition.

    `column` is a ColumnDefinition (or anything with key/type/options).
    None always clears the cell.
    """
    if value is None:
        return None

    key = column.key
    col_type = column.type

    if col_type == "number":
        return _coerce_number(key, value)

    if col_type == "date":
        return _coerce_date(key, value)

    if col_type == "select":
        options = list(column.options or [])
        if value not in options:
            raise ValidationError(
                f"{key} must be one of: {', '.join(str(o) for o in options)}",
                field=key,
            )
        return value

    # text
    if not isinstance(value, str):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        else:
            raise ValidationError(f"{key} must be text", field=key)
    if len(value) > MAX_TEXT_LENGTH:
        raise ValidationError(f"{key} must be at most {MAX_TEXT_LENGTH} characters", field=key)
    return value


def require_int(value: Any, name: str) -> int:
    """Strict integer parsing for ids and versions coming off the wire."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", field=name)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{name} must be an integer", field=name)
