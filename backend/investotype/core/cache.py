"""Small in-process TTL cache used for sessions, FX series and symbol intel."""

from __future__ import annotations

import time
from typing import Callable, Generic, Hashable, Iterator, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class TTLCache(Generic[K, V]):
    """Dictionary with optional per-entry expiry.

    ``ttl_seconds=None`` keeps entries for the lifetime of the process. Expired
    entries are dropped lazily on access and by :meth:`purge`. Values may be
    ``None``; use :meth:`lookup` to tell a cached ``None`` from a miss.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[K, tuple[float, V]] = {}

    def _expired(self, stored_at: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - stored_at > self.ttl_seconds

    def lookup(self, key: K, *, refresh: bool = False) -> tuple[bool, V | None]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        stored_at, value = entry
        if self._expired(stored_at):
            del self._entries[key]
            return False, None
        if refresh:
            self._entries[key] = (self._clock(), value)
        return True, value

    def get(self, key: K, default: V | None = None, *, refresh: bool = False) -> V | None:
        found, value = self.lookup(key, refresh=refresh)
        return value if found else default

    def set(self, key: K, value: V) -> None:
        self._entries[key] = (self._clock(), value)

    def pop(self, key: K) -> V | None:
        entry = self._entries.pop(key, _MISSING)
        if entry is _MISSING:
            return None
        return entry[1]  # type: ignore[index]

    def purge(self) -> list[K]:
        """Drop expired entries and return their keys."""

        expired = [key for key, (stored_at, _) in self._entries.items() if self._expired(stored_at)]
        for key in expired:
            del self._entries[key]
        return expired

    def __contains__(self, key: object) -> bool:
        return self.lookup(key)[0]  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries))


__all__ = ["TTLCache"]
