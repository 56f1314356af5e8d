# astro_edge/client/storage.py
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from astro_edge.core.errors import SchemaError
from astro_edge.core.schema import CanonicalObject, IndexEntry, parse_index

log = logging.getLogger(__name__)

MAX_CACHE_ITEMS = 500
EVICTION_BUFFER = 50

CONTENT_INDEX_KEY = "content_index"
OBJECT_PREFIX = "object_"

DARK_MODE_KEY = "dark_mode"
LAST_CACHE_CLEAN_KEY = "last_cache_clean"


def object_key(obj_id: str) -> str:
    return f"{OBJECT_PREFIX}{obj_id}"


def format_size(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024:.1f} KB"
    return f"{n / (1024 * 1024):.1f} MB"


def _connect(path: str) -> sqlite3.Connection:
    if path != ":memory:":
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
    return sqlite3.connect(path, check_same_thread=False)


class SettingsStore:
    """Small key/value store for user preferences, kept apart from the data cache."""

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self.conn = _connect(path)
        self.lock = threading.Lock()
        with self.lock:
            self.conn.execute("CREATE TABLE IF NOT EXISTS app_settings (k TEXT PRIMARY KEY, v TEXT NOT NULL)")
            self.conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        with self.lock:
            row = self.conn.execute("SELECT v FROM app_settings WHERE k=?", (key,)).fetchone()
        if not row:
            return default
        try:
            return json.loads(row[0])
        except ValueError:
            return default

    def set(self, key: str, value: Any) -> None:
        with self.lock:
            self.conn.execute("REPLACE INTO app_settings (k, v) VALUES (?, ?)", (key, json.dumps(value)))
            self.conn.commit()

    @property
    def dark_mode(self) -> bool:
        # space theme defaults to dark
        return bool(self.get(DARK_MODE_KEY, True))

    @dark_mode.setter
    def dark_mode(self, value: bool) -> None:
        self.set(DARK_MODE_KEY, bool(value))

    def close(self) -> None:
        with self.lock:
            self.conn.close()


class PersistentCache:
    """
    Bounded client-side cache of serialized objects, kept across sessions.

    Entries never expire by time. Once the entry count passes `max_items`, the
    oldest-inserted entries are deleted until `max_items - buffer` remain, so a
    full cache is not trimmed again on every single insert. Overwriting a key
    counts as a fresh insertion.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        max_items: int = MAX_CACHE_ITEMS,
        buffer: int = EVICTION_BUFFER,
        settings: Optional[SettingsStore] = None,
    ):
        if max_items <= 0 or not 0 <= buffer < max_items:
            raise ValueError("need max_items > 0 and 0 <= buffer < max_items")
        self.path = path
        self.max_items = max_items
        self.buffer = buffer
        self.settings = settings
        self.conn = _connect(path)
        self.lock = threading.Lock()
        self._init()

    def _init(self) -> None:
        with self.lock:
            self.conn.execute("""CREATE TABLE IF NOT EXISTS cache (
                k TEXT PRIMARY KEY,
                v TEXT NOT NULL,
                seq INTEGER NOT NULL,
                created_at REAL NOT NULL
            )""")
            self.conn.execute("CREATE INDEX IF NOT EXISTS cache_seq ON cache (seq)")
            self.conn.commit()

    # ── raw key/value ─────────────────────────────────────────────
    def get(self, key: str) -> Optional[str]:
        with self.lock:
            row = self.conn.execute("SELECT v FROM cache WHERE k=?", (key,)).fetchone()
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        with self.lock:
            (seq,) = self.conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM cache").fetchone()
            self.conn.execute("REPLACE INTO cache (k, v, seq, created_at) VALUES (?, ?, ?, ?)",
                              (key, value, seq, time.time()))
            evicted = self._evict_locked()
            self.conn.commit()
        if evicted and self.settings is not None:
            self.settings.set(LAST_CACHE_CLEAN_KEY, datetime.now(timezone.utc).isoformat())

    def _evict_locked(self) -> int:
        (count,) = self.conn.execute("SELECT COUNT(*) FROM cache").fetchone()
        if count <= self.max_items:
            return 0
        n = count - self.max_items + self.buffer
        self.conn.execute(
            "DELETE FROM cache WHERE k IN (SELECT k FROM cache ORDER BY seq ASC LIMIT ?)", (n,)
        )
        log.debug("evicted %d oldest cache entries (had %d)", n, count)
        return n

    def delete(self, key: str) -> None:
        with self.lock:
            self.conn.execute("DELETE FROM cache WHERE k=?", (key,))
            self.conn.commit()

    def __contains__(self, key: str) -> bool:
        with self.lock:
            return self.conn.execute("SELECT 1 FROM cache WHERE k=?", (key,)).fetchone() is not None

    def __len__(self) -> int:
        with self.lock:
            (count,) = self.conn.execute("SELECT COUNT(*) FROM cache").fetchone()
        return int(count)

    def keys(self) -> List[str]:
        """Keys oldest-inserted first."""
        with self.lock:
            return [r[0] for r in self.conn.execute("SELECT k FROM cache ORDER BY seq ASC")]

    def clear(self) -> None:
        with self.lock:
            self.conn.execute("DELETE FROM cache")
            self.conn.commit()

    def close(self) -> None:
        with self.lock:
            self.conn.close()

    # ── typed helpers ─────────────────────────────────────────────
    def get_object(self, obj_id: str) -> Optional[CanonicalObject]:
        raw = self.get(object_key(obj_id))
        if raw is None:
            return None
        try:
            return CanonicalObject.from_json(raw)
        except SchemaError as e:
            log.warning("dropping unreadable cache entry %s: %s", obj_id, e)
            self.delete(object_key(obj_id))
            return None

    def put_object(self, obj: CanonicalObject) -> None:
        self.put(object_key(obj.id), obj.to_json())

    def get_index(self) -> Optional[List[IndexEntry]]:
        raw = self.get(CONTENT_INDEX_KEY)
        if raw is None:
            return None
        try:
            return parse_index(json.loads(raw))
        except (ValueError, SchemaError) as e:
            log.warning("dropping unreadable cached content index: %s", e)
            self.delete(CONTENT_INDEX_KEY)
            return None

    def put_index(self, entries: List[IndexEntry]) -> None:
        self.put(CONTENT_INDEX_KEY, json.dumps([e.to_dict() for e in entries], separators=(",", ":")))

    # ── statistics ─────────────────────────────────────────────
    def size_bytes(self) -> int:
        with self.lock:
            (total,) = self.conn.execute("SELECT COALESCE(SUM(LENGTH(v)), 0) FROM cache").fetchone()
        return int(total) * 2   # rough UTF-16 footprint, comparable to the mobile client's figure

    def last_clean(self) -> Optional[datetime]:
        if self.settings is None:
            return None
        raw = self.settings.get(LAST_CACHE_CLEAN_KEY)
        try:
            return datetime.fromisoformat(raw) if raw else None
        except ValueError:
            return None

    def library_version(self) -> str:
        raw = self.get(CONTENT_INDEX_KEY)
        if raw is not None:
            try:
                data = json.loads(raw)
            except ValueError:
                data = None
            if isinstance(data, dict) and "data_version" in data:
                return str(data["data_version"])
            if isinstance(data, list):
                return f"v1.0 ({len(data)} objects)"
        return f"Local Cache: {len(self)} items"

    def stats(self) -> Dict[str, Any]:
        size = self.size_bytes()
        return {
            "cacheItemCount": len(self),
            "cacheSizeBytes": size,
            "formattedSize": format_size(size),
            "maxItems": self.max_items,
            "lastClean": self.last_clean(),
            "libraryVersion": self.library_version(),
        }
