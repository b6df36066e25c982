import time
from typing import Any, Callable, Dict, Optional, Tuple

MISSING = object()


class TTLCache:
    """
    Key -> (value, expiry) map with lazy eviction. Expired entries are
    dropped on the read that finds them; there is no size bound and no
    background sweep.

    Loaders that await between a miss and the store pass the token from
    version() back to set(). A store is skipped when a matching
    invalidate() ran in between, so a read that started before a write
    cannot put the pre-write value back.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._generation = 0
        # prefix (None = everything) -> generation of its latest invalidation
        self._invalidated: Dict[Optional[str], int] = {}

    def get(self, key: str, default: Any = MISSING) -> Any:
        # check-and-evict runs without a suspension point, so same-key
        # operations on the event loop never observe a half-evicted entry
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expiry = entry
        if self._clock() >= expiry:
            del self._entries[key]
            return default
        return value

    def version(self) -> int:
        return self._generation

    def invalidated_since(self, key: str, version: int) -> bool:
        return any(
            generation > version
            for prefix, generation in self._invalidated.items()
            if prefix is None or key.startswith(prefix)
        )

    def set(self, key: str, value: Any, ttl: float, version: Optional[int] = None) -> bool:
        """Store value; returns False when version is given and key was invalidated after it."""
        if version is not None and self.invalidated_since(key, version):
            return False
        self._entries[key] = (value, self._clock() + ttl)
        return True

    def invalidate(self, prefix: Optional[str] = None) -> int:
        self._generation += 1
        self._invalidated[prefix] = self._generation
        if prefix is None:
            count = len(self._entries)
            self._entries.clear()
            return count
        stale = [k for k in self._entries if k.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not MISSING

    def __len__(self) -> int:
        return len(self._entries)
