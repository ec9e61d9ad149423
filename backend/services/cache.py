"""
In-memory, per-process TTL cache for derived analytics.

Each aggregation service owns its own :class:`TTLCache` instances (passed in
through the constructor), so tests build isolated services with clean state.

Entries expire lazily: age is checked on ``get`` and stale entries are
dropped there.  Nothing runs in the background and nothing is invalidated
proactively: a stale value is simply recomputed on next access.

There is no locking around population.  Two requests that miss on the same
key both recompute and both write; the computations are deterministic for
the same inputs, so the last write is equivalent to the first.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)

#: Default entry lifetime for team games, ATS and matchup summaries.
DEFAULT_TTL_SECONDS: float = 6 * 60 * 60


@dataclass
class CacheEntry:
    value: Any
    created_at: float


class TTLCache:
    """
    Keyed map of values with a fixed time-to-live.

    ``clock`` defaults to :func:`time.monotonic`; tests inject a fake clock to
    step past the TTL without sleeping.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if absent or older than the TTL."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self.ttl_seconds:
            # pop() rather than del: a concurrent reader may have dropped it
            self._entries.pop(key, None)
            logger.debug("%s: expired %s", self.name, key)
            return None
        return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        """Set or replace an entry, stamping it with the current time."""
        self._entries[key] = CacheEntry(value=value, created_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
