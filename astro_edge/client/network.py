# astro_edge/client/network.py
"""
Client-side transport to our own infrastructure. The client never talks to
NASA directly:

- worker (dynamic edge proxy):  /featured, /lookup?q=
- static store (pre-generated): /objects/<id>.json, /tier_a/<id>.json, /content_index.json
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional
from urllib.parse import quote

import requests

from astro_edge.core.errors import SchemaError
from astro_edge.core.schema import CanonicalObject, IndexEntry, parse_index

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

# Curated objects were published under tier_a/ before objects/ existed;
# both are read, newest layout first.
STATIC_OBJECT_PATHS = ("/objects/{id}.json", "/tier_a/{id}.json")
CONTENT_INDEX_PATH = "/content_index.json"


class EdgeUnavailable(Exception):
    """Edge answered with an error, could not be reached, or sent junk."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class EdgeClient:
    def __init__(
        self,
        worker_base_url: str,
        static_data_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.worker_base_url = worker_base_url.rstrip("/")
        self.static_data_url = static_data_url.rstrip("/")
        self.timeout = float(timeout)
        self._session = session or requests.Session()
        self._owns_session = session is None

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise EdgeUnavailable(f"{url}: {e}") from e
        if resp.status_code != 200:
            log.debug("edge HTTP %s for %s", resp.status_code, url)
            raise EdgeUnavailable(f"{url}: HTTP {resp.status_code}", status=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise EdgeUnavailable(f"{url}: malformed JSON", status=resp.status_code) from e

    def _get_object(self, url: str, params: Optional[dict] = None) -> CanonicalObject:
        data = self._get_json(url, params)
        try:
            return CanonicalObject.from_dict(data)
        except SchemaError as e:
            raise EdgeUnavailable(f"{url}: {e}") from e

    # ── static store ─────────────────────────────────────────────
    def static_object(self, obj_id: str) -> CanonicalObject:
        last: Optional[EdgeUnavailable] = None
        for template in STATIC_OBJECT_PATHS:
            try:
                return self._get_object(self.static_data_url + template.format(id=quote(obj_id, safe="")))
            except EdgeUnavailable as e:
                last = e
        assert last is not None
        raise last

    def content_index(self) -> List[IndexEntry]:
        data = self._get_json(self.static_data_url + CONTENT_INDEX_PATH)
        try:
            return parse_index(data)
        except SchemaError as e:
            raise EdgeUnavailable(f"content index: {e}") from e

    # ── dynamic worker ─────────────────────────────────────────────
    def featured(self) -> CanonicalObject:
        return self._get_object(f"{self.worker_base_url}/featured")

    def lookup(self, query: str) -> CanonicalObject:
        return self._get_object(f"{self.worker_base_url}/lookup", params={"q": query})
