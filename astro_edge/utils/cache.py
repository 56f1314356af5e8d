# astro_edge/utils/cache.py
from __future__ import annotations

import logging
import re
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Final, Optional

log = logging.getLogger(__name__)

FEATURED_TTL: Final[float] = 24 * 3600.0
LONG_TTL: Final[float] = 365 * 24 * 3600.0   # lookups and relay payloads are treated as immutable
DEFAULT_MAX_BYTES: Final[int] = 256 * 1024 * 1024
DEFAULT_MAX_ITEM_BYTES: Final[int] = 8 * 1024 * 1024


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Final = _Miss()

_WS = re.compile(r"\s+")


def normalize_query(q: str) -> str:
    return _WS.sub(" ", (q or "").strip()).casefold()


def cache_key(operation: str, arg: Optional[str] = None) -> str:
    """featured -> 'featured'; lookup -> 'lookup:<normalized q>'; relay -> 'relay:<url>'."""
    if arg is None:
        return operation
    if operation == "lookup":
        arg = normalize_query(arg)
    return f"{operation}:{arg}"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    ttl: float
    size: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.stored_at + self.ttl


class EdgeCache:
    """
    Shared response cache for the proxy workers of one process.

    Entries are immutable blobs; put() replaces the whole entry (last writer
    wins). Two bounds apply: max_entries and max_bytes, the summed `size` the
    caller declares for each entry (relay payloads pass their body length,
    JSON objects count as 0). Insertion order doubles as the eviction order
    once either bound is passed, after expired entries have been purged. A
    single entry larger than max_item_bytes is not stored at all.
    """

    def __init__(
        self,
        max_entries: int = 2048,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_item_bytes: int = DEFAULT_MAX_ITEM_BYTES,
        clock: Callable[[], float] = time.monotonic,
        writer_threads: int = 2,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        if max_bytes <= 0 or not 0 < max_item_bytes <= max_bytes:
            raise ValueError("need 0 < max_item_bytes <= max_bytes")
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.max_item_bytes = max_item_bytes
        self._bytes = 0
        self._clock = clock
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._writer = ThreadPoolExecutor(max_workers=writer_threads, thread_name_prefix="edge-cache")
        self._pending: set = set()
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._bytes

    def get(self, key: str) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return MISS
            if entry.expired(now):
                self._drop(key)
                return MISS
            return entry.value

    def put(self, key: str, value: Any, ttl: float, size: int = 0) -> bool:
        """Store `value`; returns False when it was refused (ttl <= 0 or too large)."""
        if ttl <= 0:
            return False
        if size > self.max_item_bytes:
            log.debug("not caching %s: %d bytes over the %d byte item cap", key, size, self.max_item_bytes)
            with self._lock:
                self._drop(key)
            return False
        now = self._clock()
        with self._lock:
            self._drop(key)
            self._store[key] = CacheEntry(key=key, value=value, stored_at=now, ttl=float(ttl), size=int(size))
            self._bytes += int(size)
            if len(self._store) > self.max_entries or self._bytes > self.max_bytes:
                self._evict(now)
        return True

    def put_async(self, key: str, value: Any, ttl: float, size: int = 0) -> Optional[Future]:
        """Fire-and-forget write; the caller never waits and never sees a failure."""
        if self._closed:
            return None
        try:
            fut = self._writer.submit(self.put, key, value, ttl, size)
        except RuntimeError as e:  # pool shut down between the check and submit
            log.debug("cache write for %s dropped: %s", key, e)
            return None
        with self._lock:
            self._pending.add(fut)
        fut.add_done_callback(self._write_done(key))
        return fut

    def delete(self, key: str) -> None:
        with self._lock:
            self._drop(key)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._bytes = 0

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until writes submitted so far have landed (shutdown, tests)."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        self._closed = True
        self._writer.shutdown(wait=True)

    # ── internals (lock held) ─────────────────────────────────────────────
    def _drop(self, key: str) -> None:
        entry = self._store.pop(key, None)
        if entry is not None:
            self._bytes -= entry.size

    def _evict(self, now: float) -> None:
        for k in [k for k, e in self._store.items() if e.expired(now)]:
            self._drop(k)
        while len(self._store) > self.max_entries or self._bytes > self.max_bytes:
            _, entry = self._store.popitem(last=False)
            self._bytes -= entry.size

    def _write_done(self, key: str) -> Callable[[Future], None]:
        def _cb(fut: Future) -> None:
            with self._lock:
                self._pending.discard(fut)
            if not fut.cancelled() and fut.exception() is not None:
                log.debug("cache write for %s failed: %r", key, fut.exception())
        return _cb
