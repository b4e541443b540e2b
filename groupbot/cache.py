"""
Short-lived per-group cache of generated answers.

Queries are matched fuzzily so near-duplicate questions asked within the
same hour reuse an earlier completion instead of calling the provider again.
"""
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from groupbot.config import CACHE_PREFER_NEWEST, CACHE_TTL_SECONDS, MAX_CACHE_SIZE
from groupbot.constants import CACHE_SIMILARITY_THRESHOLD
from groupbot.similarity import similarity


@dataclass
class CacheEntry:
    query: str
    answer: str
    created_at: float


class ResponseCache:
    def __init__(
        self,
        max_size: int = MAX_CACHE_SIZE,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        threshold: float = CACHE_SIMILARITY_THRESHOLD,
        newest_first: bool = CACHE_PREFER_NEWEST,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            max_size: Entries kept per group; the oldest is evicted first
            ttl_seconds: Age after which an entry is never returned
            threshold: Similarity a stored query must exceed to match
            newest_first: Scan newest entries first instead of oldest
            clock: Time source in seconds
        """
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.threshold = threshold
        self.newest_first = newest_first
        self._clock = clock
        self._entries: deque[CacheEntry] = deque()
        self._lock = threading.Lock()

    def put(self, query: str, answer: str) -> None:
        entry = CacheEntry(query=query.lower(), answer=answer, created_at=self._clock())
        with self._lock:
            self._entries.append(entry)
            # FIFO eviction, independent of how often entries are hit
            while len(self._entries) > self.max_size:
                self._entries.popleft()

    def get(self, query: str) -> Optional[str]:
        normalized = query.lower()
        now = self._clock()
        with self._lock:
            entries = reversed(self._entries) if self.newest_first else iter(self._entries)
            for entry in entries:
                if now - entry.created_at >= self.ttl_seconds:
                    continue
                if similarity(entry.query, normalized) > self.threshold:
                    return entry.answer
        return None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ResponseCacheRegistry:
    """Owns one independently locked ResponseCache per group."""

    def __init__(self, factory: Callable[[], ResponseCache] = ResponseCache):
        self._factory = factory
        self._caches: dict[str, ResponseCache] = {}
        self._lock = threading.Lock()

    def for_group(self, group_id: str) -> ResponseCache:
        with self._lock:
            cache = self._caches.get(group_id)
            if cache is None:
                cache = self._factory()
                self._caches[group_id] = cache
            return cache

    def clear(self, group_id: str) -> None:
        with self._lock:
            self._caches.pop(group_id, None)

    def size(self, group_id: str) -> int:
        with self._lock:
            cache = self._caches.get(group_id)
        return len(cache) if cache is not None else 0
