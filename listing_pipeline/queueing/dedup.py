from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable


class MembershipCache:
    """Write-once membership set with a size bound and an optional time-to-live.

    The oldest entries are evicted first once ``capacity`` is reached; with a
    ``ttl_seconds`` set, entries also expire that long after insertion.
    """

    def __init__(
        self,
        capacity: int = 10_000,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive.")
        self._capacity = capacity
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()

    def add(self, key: str) -> None:
        self._expire()
        if key in self._entries:
            return
        self._entries[key] = self._clock()
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)

    def snapshot(self) -> list[str]:
        self._expire()
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        self._expire()
        return key in self._entries

    def __len__(self) -> int:
        self._expire()
        return len(self._entries)

    def _expire(self) -> None:
        if self._ttl_seconds is None:
            return
        cutoff = self._clock() - self._ttl_seconds
        while self._entries:
            _, inserted_at = next(iter(self._entries.items()))
            if inserted_at > cutoff:
                break
            self._entries.popitem(last=False)
