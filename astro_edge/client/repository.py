# astro_edge/client/repository.py
"""
Offline-first resolution for the client.

Object by id, tiers in strict order:
  1. LocalBundle        shipped with the build, always present
  2. PersistentCache    object_<id>, survives restarts
  3. network            static store first, then the worker's /lookup

A hit on 1 or 2 returns at once and schedules a background refresh that
re-runs tier 3, compares the result with the cached copy by full content,
and on a difference overwrites the cache and calls `on_update`. Refresh
failures are logged at debug level and dropped.

Search has no bundle tier up front: /lookup first, and the bundle's content
index (substring match) only when the network fails.

NotFoundError is the only exception that reaches callers.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from astro_edge.client.bundle import LocalBundle
from astro_edge.client.network import DEFAULT_TIMEOUT, EdgeClient, EdgeUnavailable
from astro_edge.client.storage import (
    EVICTION_BUFFER,
    MAX_CACHE_ITEMS,
    PersistentCache,
    SettingsStore,
    object_key,
)
from astro_edge.core.errors import BackgroundRefreshFailure, NotFoundError
from astro_edge.core.schema import FEATURED_FALLBACK, CanonicalObject, IndexEntry

log = logging.getLogger(__name__)

UpdateCallback = Callable[[CanonicalObject], None]

FEATURED_CACHE_ID = "featured"


@dataclass
class ClientSettings:
    worker_base_url: str = "http://localhost:5000"
    static_data_url: str = "http://localhost:8080"
    timeout: float = DEFAULT_TIMEOUT
    cache_path: str = "astro_cache.sqlite3"
    settings_path: str = "app_settings.sqlite3"
    max_cache_items: int = MAX_CACHE_ITEMS
    eviction_buffer: int = EVICTION_BUFFER
    bundle_dir: Optional[str] = None
    refresh_workers: int = 2

    @classmethod
    def from_env(cls, env=None) -> "ClientSettings":
        env = os.environ if env is None else env
        base = cls()
        return cls(
            worker_base_url=env.get("ASTRO_WORKER_URL", base.worker_base_url),
            static_data_url=env.get("ASTRO_STATIC_DATA_URL", base.static_data_url),
            timeout=float(env.get("ASTRO_CLIENT_TIMEOUT", base.timeout)),
            cache_path=env.get("ASTRO_CACHE_PATH", base.cache_path),
            settings_path=env.get("ASTRO_SETTINGS_PATH", base.settings_path),
            max_cache_items=int(env.get("ASTRO_MAX_CACHE_ITEMS", base.max_cache_items)),
            eviction_buffer=int(env.get("ASTRO_EVICTION_BUFFER", base.eviction_buffer)),
            bundle_dir=env.get("ASTRO_BUNDLE_DIR") or None,
        )


@dataclass(frozen=True)
class SearchResult:
    query: str
    objects: List[CanonicalObject] = field(default_factory=list)
    offline: bool = False   # True when only the local bundle was searched


class DataRepository:
    def __init__(
        self,
        bundle: LocalBundle,
        cache: PersistentCache,
        network: EdgeClient,
        *,
        refresh_workers: int = 2,
    ):
        self.bundle = bundle
        self.cache = cache
        self.network = network
        self._refresher = ThreadPoolExecutor(max_workers=refresh_workers, thread_name_prefix="astro-refresh")
        self.last_refresh: Optional[Future] = None

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "DataRepository":
        store = SettingsStore(settings.settings_path)
        return cls(
            LocalBundle(settings.bundle_dir),
            PersistentCache(settings.cache_path, max_items=settings.max_cache_items,
                            buffer=settings.eviction_buffer, settings=store),
            EdgeClient(settings.worker_base_url, settings.static_data_url, timeout=settings.timeout),
            refresh_workers=settings.refresh_workers,
        )

    def close(self) -> None:
        # in-flight refreshes are abandoned; their writes are idempotent overwrites
        self._refresher.shutdown(wait=False, cancel_futures=True)
        self.network.close()

    def __enter__(self) -> "DataRepository":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ───────────────────────── object by id ─────────────────────────
    def get_object(self, obj_id: str, on_update: Optional[UpdateCallback] = None) -> CanonicalObject:
        local = self.bundle.get(obj_id)
        if local is None:
            local = self._cached(obj_id)
        if local is not None:
            self._schedule_refresh(obj_id, on_update)
            return local

        try:
            return self._fetch_and_store(obj_id)
        except EdgeUnavailable as e:
            log.debug("network tiers exhausted for %s: %s", obj_id, e)
        raise NotFoundError(obj_id, f'Object "{obj_id}" not found in local storage, cache, or network')

    def _cached(self, obj_id: str) -> Optional[CanonicalObject]:
        try:
            return self.cache.get_object(obj_id)
        except sqlite3.Error as e:
            log.warning("cache read failed for %s: %s", obj_id, e)
            return None

    def _store(self, key_id: str, obj: CanonicalObject) -> None:
        try:
            self.cache.put(object_key(key_id), obj.to_json())
        except sqlite3.Error as e:
            log.warning("cache write failed for %s: %s", key_id, e)

    def _fetch_remote(self, obj_id: str) -> CanonicalObject:
        try:
            return self.network.static_object(obj_id)
        except EdgeUnavailable as e:
            log.debug("static miss for %s (%s); trying /lookup", obj_id, e)
        return self.network.lookup(obj_id)

    def _fetch_and_store(self, obj_id: str) -> CanonicalObject:
        obj = self._fetch_remote(obj_id)
        # keyed by the id the caller asked for; /lookup may answer with a nasa_id
        self._store(obj_id, obj)
        return obj

    # ───────────────────────── background refresh ─────────────────────────
    def _submit(self, fn, *args) -> Optional[Future]:
        try:
            fut = self._refresher.submit(fn, *args)
        except RuntimeError:  # repository closed
            return None
        self.last_refresh = fut
        return fut

    def _schedule_refresh(self, obj_id: str, on_update: Optional[UpdateCallback]) -> Optional[Future]:
        return self._submit(self._run_refresh, obj_id, on_update)

    def _run_refresh(self, obj_id: str, on_update: Optional[UpdateCallback]) -> bool:
        try:
            return self._refresh(obj_id, on_update)
        except Exception as e:
            log.debug("%s", BackgroundRefreshFailure(obj_id, e))
            return False

    def _refresh(self, obj_id: str, on_update: Optional[UpdateCallback]) -> bool:
        fresh = self._fetch_remote(obj_id)
        current = self.cache.get_object(obj_id)
        if current is not None and current.to_json() == fresh.to_json():
            return False
        self.cache.put(object_key(obj_id), fresh.to_json())
        if on_update is not None:
            on_update(fresh)
        return True

    # ───────────────────────── search ─────────────────────────
    def search(self, query: str) -> SearchResult:
        q = (query or "").strip()
        if not q:
            raise NotFoundError(query or "", "Empty query")
        try:
            obj = self.network.lookup(q)
        except EdgeUnavailable as e:
            log.debug("lookup failed for %r (%s); searching local bundle", q, e)
        else:
            self._store(obj.id, obj)
            return SearchResult(q, [obj], offline=False)

        matches = [self.bundle.get(e.id) or e.to_object() for e in self.bundle.search(q)]
        if not matches:
            raise NotFoundError(q, f'No local results found for "{q}"', offline=True)
        return SearchResult(q, matches, offline=True)

    # ───────────────────────── featured object ─────────────────────────
    def get_featured(self) -> CanonicalObject:
        """Today's featured object; last good copy, then the built-in fallback, when offline."""
        try:
            obj = self.network.featured()
        except EdgeUnavailable as e:
            log.debug("featured unavailable: %s", e)
            return self._cached(FEATURED_CACHE_ID) or FEATURED_FALLBACK
        self._store(FEATURED_CACHE_ID, obj)
        return obj

    # ───────────────────────── content index ─────────────────────────
    def get_content_index(self) -> List[IndexEntry]:
        try:
            cached = self.cache.get_index()
        except sqlite3.Error as e:
            log.warning("cache read failed for content index: %s", e)
            cached = None
        if cached is not None:
            self._submit(self._run_index_refresh)
            return cached
        try:
            return self._refresh_index()
        except (EdgeUnavailable, sqlite3.Error) as e:
            log.debug("content index unavailable (%s); using bundled index", e)
            return self.bundle.index()

    def _run_index_refresh(self) -> bool:
        try:
            self._refresh_index()
        except Exception as e:
            log.debug("%s", BackgroundRefreshFailure("content_index", e))
            return False
        return True

    def _refresh_index(self) -> List[IndexEntry]:
        entries = self.network.content_index()
        self.cache.put_index(entries)
        return entries

    def clear_cache(self) -> None:
        self.cache.clear()
