import time
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class _Entry:
    expires_at: float
    value: Any


class TTLCache:
    """Small in-process cache with per-entry expiry and a size bound."""

    def __init__(self, *, max_items: int = 1000, ttl_s: float = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self._max_items = max(1, int(max_items or 1))
        self._ttl_s = max(0.001, float(ttl_s or 1))
        self._clock = clock
        self._items: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._items)

    def get(self, key: str) -> Any | None:
        entry = self._items.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._items.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._evict_if_needed()
        self._items[key] = _Entry(expires_at=self._clock() + self._ttl_s, value=value)

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is None:
            value = factory()
            self.set(key, value)
        return value

    def pop(self, key: str) -> Any | None:
        entry = self._items.pop(key, None)
        return entry.value if entry else None

    def _evict_if_needed(self) -> None:
        if len(self._items) < self._max_items:
            return
        now = self._clock()
        for k in [k for k, e in self._items.items() if e.expires_at <= now]:
            self._items.pop(k, None)
        # Oldest insertions go first
        while len(self._items) >= self._max_items and self._items:
            self._items.pop(next(iter(self._items)), None)
