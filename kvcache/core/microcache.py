"""Tiny in-process read-through cache for permanent entries.

- process-local (no cross-worker coherence)
- no TTL: entries leave only when their key is written or deleted
- best-effort eviction (clear-on-pressure)

Fills race with writes: a reader takes a token before going to the durable
store and may only fill the slot if no write touched the key in between.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

_MISSING = object()


@dataclass(frozen=True)
class FillToken:
    key: str
    epoch: int
    generation: int


class LocalCache:
    def __init__(self, max_items: int = 1024):
        self.max_items = max_items
        self._values: dict[str, Optional[str]] = {}
        self._generations: dict[str, int] = {}
        # Bumped whenever generations are forgotten, which voids every outstanding token.
        self._epoch = 0

    @property
    def enabled(self) -> bool:
        return self.max_items > 0

    def __len__(self) -> int:
        return len(self._values)

    def lookup(self, key: str) -> tuple[bool, Optional[str]]:
        """Return ``(hit, value)``; a stored ``None`` value is still a hit."""
        value = self._values.get(key, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value  # type: ignore[return-value]

    def token(self, key: str) -> FillToken:
        return FillToken(key=key, epoch=self._epoch, generation=self._generations.get(key, 0))

    def fill(self, token: FillToken, value: Optional[str]) -> bool:
        """Store a value read from the durable store unless the key changed meanwhile."""
        if not self.enabled:
            return False
        if token.epoch != self._epoch:
            return False
        if self._generations.get(token.key, 0) != token.generation:
            return False
        self._store(token.key, value)
        return True

    def put(self, key: str, value: Optional[str]) -> None:
        """Write-through after a successful durable write."""
        self._bump(key)
        if self.enabled:
            self._store(key, value)

    def evict(self, key: str) -> None:
        self._bump(key)
        self._values.pop(key, None)

    def clear(self) -> None:
        self._values.clear()
        self._generations.clear()
        self._epoch += 1

    def _bump(self, key: str) -> None:
        if key not in self._generations and len(self._generations) >= 4 * max(self.max_items, 1):
            self.clear()
        self._generations[key] = self._generations.get(key, 0) + 1

    def _store(self, key: str, value: Optional[str]) -> None:
        if key not in self._values and len(self._values) >= self.max_items:
            # Evict everything: cheap and deterministic.
            self.clear()
        self._values[key] = value


__all__ = ["FillToken", "LocalCache"]
