"""In-memory cache with time-to-live expiration.

Used by the beads adapter to avoid redundant CLI calls for data that
changes infrequently. The orchestrator invalidates the whole cache after
every mutating action so the next read sees fresh labels.
"""

import time
from typing import Any, Callable, Dict, Optional, Tuple


class TTLCache:
    """Key/value cache whose entries expire after a fixed interval.

    Attributes:
        ttl_seconds: Lifetime of an entry in seconds.
    """

    def __init__(
        self,
        ttl_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._store[key] = (self._clock(), value)

    def invalidate(self, key: str) -> None:
        self._store.pop(key, None)

    def invalidate_all(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)
