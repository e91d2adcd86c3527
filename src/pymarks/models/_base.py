"""Base model and timestamp coercion for backing-store rows.

Every row model inherits from :class:`MarksBaseModel` which provides:

* frozen instances, so snapshots handed to listeners cannot be mutated
* ``extra="ignore"`` so new server-side columns do not break parsing
* ``populate_by_name`` so rows can be built from wire keys or field names

Timestamps go through :data:`MarksTimestamp`, which accepts ISO-8601 strings,
epoch seconds or epoch milliseconds and always yields an aware UTC datetime.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_marks_timestamp(value: Any) -> Any:
    """Coerce a wire timestamp to an aware UTC :class:`datetime`.

    Values that are not timestamps are returned unchanged so pydantic
    reports the validation error.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts = ts / 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return value
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return value


MarksTimestamp = Annotated[datetime, BeforeValidator(parse_marks_timestamp)]
"""Annotated type that coerces ISO strings and epoch values to UTC datetimes."""


class MarksBaseModel(BaseModel):
    """Base for backing-store row models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        str_strip_whitespace=True,
    )
