"""Validation of operator-supplied field values.

Nothing reaches the pending-change store without passing through here:
``parse_field_value`` turns raw text from the CLI/UI into a typed value,
``check_field_value`` re-checks a typed value at the store boundary.

Accepted date formats::

    2024-01-15 14:30:00 +0000   (full, with offset)
    2024-01-15 14:30:00+0530    (offset without separating space)
    2024-01-15 14:30:00         (UTC assumed)
    2024-01-15 14:30            (UTC, seconds = 0)
    2024-01-15                  (midnight UTC)
"""
from __future__ import annotations

from datetime import datetime, timezone

from retcon.errors import ValidationError
from retcon.models import EditableField

_DATE_FORMATS_WITH_OFFSET = ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%d %H:%M:%S%z")
_DATE_FORMATS_NAIVE = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d")

FieldValue = str | datetime


def validate_email(email: str, field: str = "email") -> str:
    """Return *email* unchanged or raise :class:`ValidationError`.

    Deliberately loose: one ``@`` with text on both sides, a dotted domain
    that neither starts nor ends with a dot, and no spaces.
    """
    parts = email.split("@")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValidationError(field, f"{email!r} is not an email address")
    domain = parts[1]
    if "." not in domain or domain.startswith(".") or domain.endswith("."):
        raise ValidationError(field, f"{email!r} has no valid domain")
    if " " in email:
        raise ValidationError(field, f"{email!r} contains spaces")
    return email


def parse_date(raw: str, field: str = "date") -> datetime:
    """Parse *raw* into a timezone-aware ``datetime``."""
    text = raw.strip()
    for fmt in _DATE_FORMATS_WITH_OFFSET:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    for fmt in _DATE_FORMATS_NAIVE:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValidationError(
        field, f"{raw!r}. Expected: YYYY-MM-DD HH:MM:SS [+/-]HHMM"
    )


def format_date_for_edit(when: datetime) -> str:
    """Inverse of :func:`parse_date` for the full format."""
    return when.strftime("%Y-%m-%d %H:%M:%S %z")


def parse_field_value(field: EditableField, raw: str) -> FieldValue:
    """Turn operator text into the typed value stored for *field*."""
    if field.is_date:
        return parse_date(raw, field.value)
    if field.is_email:
        return validate_email(raw.strip(), field.value)
    if field is EditableField.MESSAGE:
        if not raw.strip():
            raise ValidationError(field.value, "message must not be empty")
        return raw
    name = raw.strip()
    if not name:
        raise ValidationError(field.value, "name must not be empty")
    if "<" in name or ">" in name or "\n" in name:
        raise ValidationError(field.value, f"{raw!r} contains '<', '>' or a newline")
    return name


def check_field_value(field: EditableField, value: object) -> FieldValue:
    """Re-validate an already-typed value before it enters the store."""
    if field.is_date:
        if not isinstance(value, datetime):
            raise ValidationError(field.value, f"expected a datetime, got {type(value).__name__}")
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValidationError(field.value, "timestamp must carry a timezone offset")
        return value
    if not isinstance(value, str):
        raise ValidationError(field.value, f"expected text, got {type(value).__name__}")
    return parse_field_value(field, value)


def same_value(a: FieldValue | None, b: FieldValue | None) -> bool:
    """Equality for stored overrides.

    Datetimes at the same instant but with different UTC offsets are
    different values here: the offset is written into the commit.
    """
    if isinstance(a, datetime) and isinstance(b, datetime):
        return a == b and a.utcoffset() == b.utcoffset()
    return a == b
