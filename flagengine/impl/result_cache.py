import time
from typing import Hashable, NamedTuple, Optional, Tuple

from expiringdict import ExpiringDict

from flagengine.evaluation import EvaluationResult
from flagengine.impl.rwlock import ReadWriteLock
from flagengine.impl.util import log

DEFAULT_TTL = 300.0
DEFAULT_CAPACITY = 10000


class CacheEntry(NamedTuple):
    result: EvaluationResult
    inserted_at: float


class ResultCache:
    """
    A time-bounded memo of evaluation results, keyed by ``(flag_name, fingerprint)``.

    Entries expire ``ttl`` seconds after they were stored; expiry is checked lazily when an entry is
    read, and :func:`sweep()` can be called to drop expired entries proactively. The number of
    entries is bounded by ``capacity``, with the oldest entries discarded first.

    ``get`` and ``put`` hold the read side of a read-write lock, so lookups never wait for each other
    (the underlying ExpiringDict serializes its own mutations); ``clear`` and ``sweep`` hold the
    write side.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, capacity: int = DEFAULT_CAPACITY):
        if ttl <= 0:
            raise ValueError('ttl must be positive')
        if capacity <= 0:
            raise ValueError('capacity must be positive')
        self._ttl = ttl
        self._lock = ReadWriteLock()
        self._entries = ExpiringDict(max_len=capacity, max_age_seconds=ttl)

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: Hashable) -> Tuple[Optional[EvaluationResult], bool]:
        with self._lock.read():
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            if not isinstance(entry, CacheEntry) or not isinstance(entry.result, EvaluationResult):
                log.warning("Discarding corrupt result cache entry for %s", key)
                self._entries.pop(key, None)
                return None, False
            return entry.result, True

    def put(self, key: Hashable, result: EvaluationResult):
        with self._lock.read():
            self._entries[key] = CacheEntry(result, time.time())

    def clear(self):
        with self._lock.write():
            self._entries.clear()

    def sweep(self) -> int:
        """Drops every expired entry and returns how many were dropped."""
        removed = 0
        with self._lock.write():
            # reading an expired key from an ExpiringDict deletes it
            for key in list(self._entries.keys()):
                if self._entries.get(key) is None:
                    removed += 1
        if removed:
            log.debug("Result cache sweep dropped %d expired entries", removed)
        return removed

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)
