# astro_edge/core/upstream.py
"""
NASA upstream adapter.

Two JSON endpoints and one binary fetch:
- APOD (featured object of the day)      -> fetch_featured()
- NASA Image Library search (best match) -> lookup(query)
- arbitrary asset URL for /relay         -> fetch_relay(url)

Raw upstream JSON is validated with pydantic models before normalization, so
nothing past this module sees an untyped dict. Normalization itself is pure.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Final, FrozenSet, List, Optional
from urllib.parse import urljoin, urlsplit

import requests
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from astro_edge.core.errors import NotFound, UpstreamError
from astro_edge.core.schema import (
    SOURCE_NASA,
    UNKNOWN,
    CanonicalObject,
    infer_category,
    is_private_target,
    relay_url,
)
from astro_edge.version import USER_AGENT

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.nasa.gov"
DEFAULT_IMAGES_API_URL = "https://images-api.nasa.gov"
DEFAULT_TIMEOUT = 12.0
NO_DESCRIPTION = "No description available"
DEFAULT_MAX_RELAY_BYTES = 20 * 1024 * 1024
MAX_RELAY_REDIRECTS = 3

_REDIRECT_CODES: Final[FrozenSet[int]] = frozenset({301, 302, 303, 307, 308})
_API_KEY_PARAM = re.compile(r"(api_key=)[^&\s'\"]+")


# ───────────────────────── upstream payload models ─────────────────────────
class _Upstream(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ApodPayload(_Upstream):
    date: str
    title: str = ""
    explanation: str = ""
    url: Optional[str] = None
    hdurl: Optional[str] = None
    media_type: str = "image"
    thumbnail_url: Optional[str] = None


class SearchDatum(_Upstream):
    nasa_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    description_508: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)

    @field_validator("keywords", mode="before")
    @classmethod
    def _keywords_as_list(cls, v: Any) -> Any:
        # a handful of records carry a single comma-joined string
        if v is None:
            return []
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v


class SearchLink(_Upstream):
    href: str = ""
    render: Optional[str] = None


class SearchItem(_Upstream):
    data: List[SearchDatum] = Field(default_factory=list)
    links: List[SearchLink] = Field(default_factory=list)

    def first_image(self) -> str:
        for link in self.links:
            if link.render == "image" and link.href:
                return link.href
        return ""


class SearchCollection(_Upstream):
    items: List[SearchItem] = Field(default_factory=list)


class SearchEnvelope(_Upstream):
    collection: SearchCollection = Field(default_factory=SearchCollection)


@dataclass(frozen=True)
class RelayPayload:
    body: bytes
    content_type: str


# ───────────────────────── normalization (pure) ─────────────────────────
def normalize_apod(payload: ApodPayload, relay_base: str, fallback_thumbnail: str = "") -> CanonicalObject:
    if payload.media_type == "image":
        target = payload.hdurl or payload.url or ""
    else:
        # videos: use the provider thumbnail, else the configured stand-in
        target = payload.thumbnail_url or fallback_thumbnail
    return CanonicalObject(
        id=payload.date,
        title=payload.title,
        description=payload.explanation,
        image_url=relay_url(relay_base, target) if target else "",
        category="other",
        metadata={"distance": UNKNOWN, "constellation": UNKNOWN},
        source_label=SOURCE_NASA,
    )


def normalize_search_item(query: str, item: SearchItem, relay_base: str) -> CanonicalObject:
    datum = item.data[0] if item.data else SearchDatum()
    link = item.first_image()
    return CanonicalObject(
        id=datum.nasa_id or query,
        title=datum.title or query,
        description=datum.description or datum.description_508 or NO_DESCRIPTION,
        image_url=relay_url(relay_base, link) if link else "",
        category=infer_category(datum.title or "", datum.keywords),
        metadata={"distance": UNKNOWN, "constellation": UNKNOWN},
        source_label=SOURCE_NASA,
    )


# ───────────────────────── adapter ─────────────────────────
class NasaAdapter:
    """Thin HTTP client for the NASA endpoints used by the proxy. Never retries.

    Error messages raised from here end up in client-facing bodies, so they
    never carry the upstream URL (it holds the API key) or exception text.
    """

    def __init__(
        self,
        *,
        api_key: str = "DEMO_KEY",
        api_url: str = DEFAULT_API_URL,
        images_api_url: str = DEFAULT_IMAGES_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        fallback_thumbnail: str = "",
        max_relay_bytes: int = DEFAULT_MAX_RELAY_BYTES,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or "DEMO_KEY"
        self.api_url = api_url.rstrip("/")
        self.images_api_url = images_api_url.rstrip("/")
        self.timeout = float(timeout)
        self.fallback_thumbnail = fallback_thumbnail or ""
        self.max_relay_bytes = int(max_relay_bytes)
        self._session = session or requests.Session()
        self._owns_session = session is None

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def redact(self, text: Any) -> str:
        """Strip the API key from text bound for the server log."""
        return _API_KEY_PARAM.sub(r"\1<redacted>", str(text)).replace(self.api_key, "<redacted>")

    # ── transport ─────────────────────────────────────────────
    def _send(self, url: str, **kw: Any) -> requests.Response:
        try:
            return self._session.get(url, timeout=self.timeout, **kw)
        except requests.Timeout as e:
            log.warning("upstream timeout after %gs: %s", self.timeout, self.redact(e))
            raise UpstreamError("Upstream timeout") from None
        except requests.RequestException as e:
            log.warning("upstream unreachable: %s", self.redact(e))
            raise UpstreamError("Upstream unreachable") from None

    def _get(self, url: str, *, params: Optional[Dict[str, Any]] = None,
             headers: Optional[Dict[str, str]] = None) -> requests.Response:
        resp = self._send(url, params=params, headers=headers)
        if not resp.ok:
            log.warning("upstream HTTP %s for %s", resp.status_code, self.redact(url))
            raise UpstreamError(f"NASA API error: {resp.status_code} {resp.reason or ''}".strip(),
                                status=resp.status_code)
        return resp

    def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        resp = self._get(url, params=params, headers={"Accept": "application/json"})
        try:
            return resp.json()
        except ValueError:
            raise UpstreamError("NASA API returned malformed JSON", status=resp.status_code) from None

    # ── operations ─────────────────────────────────────────────
    def fetch_featured(self, relay_base: str) -> CanonicalObject:
        raw = self._get_json(f"{self.api_url}/planetary/apod",
                             {"api_key": self.api_key, "thumbs": "true"})
        try:
            payload = ApodPayload.model_validate(raw)
        except PydanticValidationError as e:
            raise UpstreamError(f"Unexpected APOD payload: {e.error_count()} schema error(s)") from None
        return normalize_apod(payload, relay_base, self.fallback_thumbnail)

    def lookup(self, query: str, relay_base: str) -> CanonicalObject:
        raw = self._get_json(f"{self.images_api_url}/search",
                             {"q": query, "media_type": "image"})
        try:
            envelope = SearchEnvelope.model_validate(raw)
        except PydanticValidationError as e:
            raise UpstreamError(f"Unexpected search payload: {e.error_count()} schema error(s)") from None
        items = envelope.collection.items
        if not items:
            raise NotFound(query)
        # best match is upstream order, no re-ranking
        return normalize_search_item(query, items[0], relay_base)

    def fetch_relay(self, url: str) -> RelayPayload:
        """GET an asset for /relay: 200 only, bounded size, redirects checked hop by hop."""
        resp = self._follow(url)
        try:
            if resp.status_code != 200:
                log.warning("relay HTTP %s for %s", resp.status_code, url)
                raise UpstreamError(f"Relay upstream answered {resp.status_code}", status=resp.status_code)
            body = self._read_capped(resp)
        finally:
            resp.close()
        return RelayPayload(
            body=body,
            content_type=resp.headers.get("Content-Type") or "image/jpeg",
        )

    def _follow(self, url: str) -> requests.Response:
        headers = {"User-Agent": USER_AGENT}
        for _ in range(MAX_RELAY_REDIRECTS + 1):
            resp = self._send(url, headers=headers, stream=True, allow_redirects=False)
            location = resp.headers.get("Location")
            if resp.status_code not in _REDIRECT_CODES or not location:
                return resp
            resp.close()
            url = urljoin(url, location)
            if urlsplit(url).scheme not in ("http", "https") or is_private_target(url):
                log.warning("relay redirect to disallowed target %s", url)
                raise UpstreamError("Relay redirect refused", status=resp.status_code)
        raise UpstreamError("Too many relay redirects", status=resp.status_code)

    def _read_capped(self, resp: requests.Response) -> bytes:
        limit = self.max_relay_bytes
        declared = resp.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > limit:
            log.warning("relay payload of %s bytes over the %d byte cap", declared, limit)
            raise UpstreamError("Relay payload too large", status=413)
        chunks: List[bytes] = []
        total = 0
        try:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                total += len(chunk)
                if total > limit:
                    log.warning("relay payload over the %d byte cap", limit)
                    raise UpstreamError("Relay payload too large", status=413)
                chunks.append(chunk)
        except requests.RequestException as e:
            log.warning("relay body read failed: %s", self.redact(e))
            raise UpstreamError("Upstream unreachable") from None
        return b"".join(chunks)
