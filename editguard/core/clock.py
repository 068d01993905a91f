from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import TypeAdapter, ValidationError

_DATETIME = TypeAdapter(datetime)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_instant(value: Any) -> datetime | None:
    """
    Parse a version timestamp into an aware UTC instant.

    Accepts datetimes and ISO-8601 strings ("2024-01-01T10:00:00Z",
    "2024-01-01 10:00:00+00:00", ...). Naive values are read as UTC.
    Returns None for missing or unparseable input.
    """
    if value is None or value == "":
        return None
    try:
        parsed = _DATETIME.validate_python(value)
    except ValidationError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
