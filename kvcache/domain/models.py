from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from kvcache.core.time_utils import ensure_aware_utc

from .base import Base


MAX_KEY_LENGTH = 512


class CacheEntry(Base):
    """Durable record of a cache entry; the source of truth for every key."""

    __tablename__ = "cache_entries"
    __table_args__ = (Index("ix_cache_entries_expires_at", "expires_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(
        "cache_key", String(MAX_KEY_LENGTH), unique=True, nullable=False
    )
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @validates("key")
    def _validate_key(self, _field: str, value: str) -> str:
        if self.key is not None and value != self.key:
            raise ValueError("cache entry key is immutable")
        return value

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: datetime) -> bool:
        """Expired iff an expiry is set and lies strictly before ``now``."""
        if self.expires_at is None:
            return False
        return ensure_aware_utc(self.expires_at) < ensure_aware_utc(now)

    def __repr__(self) -> str:
        return f"<CacheEntry {self.key!r} expires_at={self.expires_at!r}>"


__all__ = ["CacheEntry", "MAX_KEY_LENGTH"]
