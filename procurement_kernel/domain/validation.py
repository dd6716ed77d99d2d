"""
Lightweight domain validation helpers.

Pure checks with no I/O.  Each helper returns the normalized value or raises
``ValidationError`` naming the offending field, so callers can report exactly
which input failed.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from procurement_kernel.db.types import HUNDRED, ZERO, fits_storage_scale, to_decimal
from procurement_kernel.exceptions import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
GST_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")


def require_text(value: str | None, field: str) -> str:
    """Return the trimmed text; blank or missing raises ValidationError."""
    if value is None or not str(value).strip():
        raise ValidationError(field, "is required")
    return str(value).strip()


def optional_text(value: str | None) -> str | None:
    """Trim text, mapping blank to None."""
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def require_decimal(value: Any, field: str) -> Decimal:
    """Coerce to Decimal (never via float) within storage precision."""
    if value is None:
        raise ValidationError(field, "is required")
    try:
        result = to_decimal(value, field)
    except ValueError as exc:
        raise ValidationError(field, str(exc)) from exc
    if not fits_storage_scale(result):
        raise ValidationError(field, "has more than 9 decimal places")
    return result


def require_positive(value: Any, field: str) -> Decimal:
    """Decimal strictly greater than zero."""
    result = require_decimal(value, field)
    if result <= ZERO:
        raise ValidationError(field, f"must be greater than 0, got {result}")
    return result


def require_non_negative(value: Any, field: str) -> Decimal:
    result = require_decimal(value, field)
    if result < ZERO:
        raise ValidationError(field, f"must not be negative, got {result}")
    return result


def require_percent(value: Any, field: str) -> Decimal:
    """Percentage in the closed range 0..100."""
    result = require_decimal(value, field)
    if result < ZERO or result > HUNDRED:
        raise ValidationError(field, f"must be between 0 and 100, got {result}")
    return result


def require_email(value: str | None, field: str = "email") -> str:
    email = require_text(value, field)
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(field, f"'{email}' is not a valid email address")
    return email


def require_gst_number(value: str | None, field: str = "gst_number") -> str:
    """Upper-case and validate a 15-character GSTIN."""
    gst = require_text(value, field).upper()
    if not GST_PATTERN.match(gst):
        raise ValidationError(field, f"'{gst}' is not a valid GST number")
    return gst


def require_enum(enum_cls: type, value: Any, field: str):
    """Resolve ``value`` to a member of ``enum_cls``."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(field, f"'{value}' is not one of: {allowed}") from exc
