"""Datetime normalization helpers."""

from datetime import datetime, timezone


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values read back from storage.

    Some backends (SQLite) drop tzinfo on DateTime(timezone=True) columns.
    All persisted timestamps are written in UTC, so a naive value is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
