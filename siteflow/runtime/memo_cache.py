"""
Memo Cache - Bounded, expiring cache of executor results.

Keys are hashes of (task definition, context snapshot), so a node re-run
against an unchanged context is answered from here instead of calling the
executor again. Entries expire after a fixed TTL; past capacity the oldest
*inserted* entry is dropped (lookups do not refresh position).

One cache is shared by every session in the process.
"""

import copy
import logging
import time
from collections import OrderedDict
from typing import Any

from siteflow.config import DEFAULT_MEMO_MAX_ENTRIES, DEFAULT_MEMO_TTL_SECONDS
from siteflow.schemas.session import MemoEntry

logger = logging.getLogger(__name__)


class MemoCache:
    """
    Insertion-ordered TTL cache.

    Example:
        cache = MemoCache(max_entries=100, ttl_seconds=300)
        cache.set(key, {"pages": 12})
        cache.get(key)  # {"pages": 12} until the TTL elapses
    """

    _MISS = object()

    def __init__(
        self,
        max_entries: int = DEFAULT_MEMO_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_MEMO_TTL_SECONDS,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._entries: OrderedDict[str, MemoEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Return a deep copy of the cached value, or ``default`` if missing/expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default
        if entry.is_expired():
            del self._entries[key]
            self.misses += 1
            return default
        self.hits += 1
        return copy.deepcopy(entry.value)

    def lookup(self, key: str) -> tuple[bool, Any]:
        """``(hit, value)``; distinguishes a cached ``None`` from a miss."""
        value = self.get(key, self._MISS)
        if value is self._MISS:
            return False, None
        return True, value

    def set(self, key: str, value: Any) -> None:
        """Insert or replace an entry; replacing moves it to the newest position."""
        self._entries.pop(key, None)
        self._entries[key] = MemoEntry(
            key=key,
            value=copy.deepcopy(value),
            inserted_at=time.monotonic(),
            ttl_seconds=self.ttl_seconds,
        )
        self._prune()

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def _prune(self) -> None:
        """Drop expired entries, then the oldest-inserted ones past capacity."""
        now = time.monotonic()
        for key, entry in list(self._entries.items()):
            if entry.is_expired(now):
                self._entries.pop(key, None)

        while len(self._entries) > self.max_entries:
            old_key, _ = self._entries.popitem(last=False)
            logger.debug(f"Memo cache full, evicted {old_key[:12]}")

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key) if isinstance(key, str) else None
        return entry is not None and not entry.is_expired()

    def __len__(self) -> int:
        return len(self._entries)
