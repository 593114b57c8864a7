"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from libs.common.datetime_utils import Timestamp, utc_now

    class Order(BaseModel):
        created_at: Timestamp = Field(default_factory=utc_now)

Persisted timestamps are always rendered with microseconds and an explicit
``+00:00`` offset so that string order equals chronological order in both
storage backends.
"""

from datetime import datetime, timezone
from typing import Annotated

from pydantic import AfterValidator, PlainSerializer


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime.

    This replaces the deprecated datetime.utcnow() which returns naive datetimes.
    Always use this for persisted timestamps.
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Fixed-width ISO-8601 rendering used for every stored timestamp."""
    return ensure_utc(value).isoformat(timespec="microseconds")


Timestamp = Annotated[
    datetime,
    AfterValidator(ensure_utc),
    PlainSerializer(to_iso, return_type=str, when_used="json"),
]
