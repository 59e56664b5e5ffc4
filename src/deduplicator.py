"""
Event Deduplicator - Suppress repeated webhook deliveries.

Meta retries webhooks until it sees a 200, so the same comment or DM can
arrive several times. The deduplicator keeps a bounded, insertion-ordered set
of event keys and answers "have we seen this one already?".

Eviction:
    When the set grows past capacity, the oldest half is dropped in one pass,
    leaving between capacity/2 and capacity keys resident. The key that was
    just marked always survives.

Keys:
    Direct messages:     "{mid}_{sender}_{recipient}"
    Comments/mentions:   comment id
"""

import asyncio
import logging

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class EventDeduplicator:
    """Bounded recency set of processed event keys."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        # dict preserves insertion order
        self._keys: dict[str, None] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    async def is_processed(self, key: str) -> bool:
        async with self._lock:
            return key in self._keys

    async def mark_processed(self, key: str) -> None:
        async with self._lock:
            self._mark(key)

    async def check_and_mark(self, key: str) -> bool:
        """
        Atomically test and record a key.

        Returns:
            True if the key was already processed (caller should drop the
            event), False if this is the first delivery.
        """
        async with self._lock:
            if key in self._keys:
                return True
            self._mark(key)
            return False

    def clear(self) -> None:
        self._keys.clear()

    def _mark(self, key: str) -> None:
        self._keys.pop(key, None)
        self._keys[key] = None

        if len(self._keys) > self.capacity:
            evict = len(self._keys) // 2
            for old_key in list(self._keys)[:evict]:
                del self._keys[old_key]
            logger.debug(f"Dedup set evicted {evict} keys, {len(self._keys)} remain")
