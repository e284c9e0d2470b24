from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware_utc(dt: datetime) -> datetime:
    """
    Return a timezone-aware UTC datetime.

    Naive values are taken to be UTC already; SQLite hands back naive
    datetimes even for ``DateTime(timezone=True)`` columns.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


__all__ = ["Clock", "ensure_aware_utc", "utc_now"]
