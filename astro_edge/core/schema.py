# astro_edge/core/schema.py
"""
Canonical object schema shared by the edge proxy and the client repository.

- CanonicalObject is the only shape that leaves the upstream adapter.
- Wire names differ from attribute names: category -> "type", source_label -> "source".
- imageUrl must point at the proxy's /relay operation, never at an upstream host.
"""

from __future__ import annotations

import ipaddress
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Final, Iterable, List, Literal, Mapping, Optional, Tuple
from urllib.parse import quote, urlsplit

from astro_edge.core.errors import SchemaError

Category = Literal["galaxy", "star", "planet", "nebula", "other"]

# Priority order matters: the first substring hit wins.
CATEGORY_PRIORITY: Final[Tuple[str, ...]] = ("galaxy", "star", "planet", "nebula")
CATEGORIES: Final[Tuple[str, ...]] = CATEGORY_PRIORITY + ("other",)

UNKNOWN: Final[str] = "Unknown"
REQUIRED_METADATA: Final[Tuple[str, ...]] = ("distance", "constellation")

SOURCE_NASA: Final[str] = "NASA"
SOURCE_LOCAL: Final[str] = "Local"

UPSTREAM_HOSTS: Final[frozenset] = frozenset({
    "api.nasa.gov",
    "apod.nasa.gov",
    "images-api.nasa.gov",
    "images-assets.nasa.gov",
    "youtube.com",
    "www.youtube.com",
    "img.youtube.com",
})

_extra_upstream_hosts: set = set()


def register_upstream_hosts(hosts: Iterable[str]) -> None:
    """Add hostnames (e.g. a configured NASA mirror) to the relay guard."""
    for h in hosts:
        if h:
            _extra_upstream_hosts.add(h.strip().lower())


def is_upstream_url(url: str) -> bool:
    host = (urlsplit(url).hostname or "").lower()
    return bool(host) and (host in UPSTREAM_HOSTS or host in _extra_upstream_hosts)


_NUMERIC_LABEL = re.compile(r"0x[0-9a-f]*|[0-9]+")
_PRIVATE_SUFFIXES: Final[Tuple[str, ...]] = (".localhost", ".local", ".internal", ".lan", ".home.arpa")


def is_private_target(url: str) -> bool:
    """True for loopback, private, link-local and other non-public hosts.

    Only literal addresses and well-known local names are recognised; names
    are not resolved here.
    """
    host = (urlsplit(url).hostname or "").lower().rstrip(".")
    if not host or host == "localhost" or host.endswith(_PRIVATE_SUFFIXES):
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        # 2130706433, 127.1, 0x7f.0.0.1: resolvers accept these shorthands
        return all(_NUMERIC_LABEL.fullmatch(label) for label in host.split("."))
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return not addr.is_global or addr.is_multicast


def infer_category(title: Optional[str], keywords: Iterable[str] = ()) -> str:
    haystack = f"{title or ''} {' '.join(k for k in keywords if k)}".lower()
    for cat in CATEGORY_PRIORITY:
        if cat in haystack:
            return cat
    return "other"


def relay_url(base_url: str, target: str) -> str:
    """Wrap an upstream asset URL so it is only reachable through the proxy."""
    return f"{base_url.rstrip('/')}/relay?url={quote(target, safe='')}"


def _fill_metadata(raw: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    meta: Dict[str, str] = {}
    for k, v in (raw or {}).items():
        meta[str(k)] = UNKNOWN if v is None or v == "" else str(v)
    for k in REQUIRED_METADATA:
        meta.setdefault(k, UNKNOWN)
    return meta


@dataclass(frozen=True)
class CanonicalObject:
    id: str
    title: str
    description: str
    image_url: str
    category: str = "other"
    metadata: Dict[str, str] = field(default_factory=dict)
    source_label: str = SOURCE_NASA

    def __post_init__(self) -> None:
        if self.category not in CATEGORIES:
            raise SchemaError(f"category must be one of {CATEGORIES}, got {self.category!r}")
        if self.image_url and is_upstream_url(self.image_url):
            raise SchemaError(f"imageUrl must be a relay URL, got upstream host in {self.image_url!r}")
        object.__setattr__(self, "metadata", _fill_metadata(self.metadata))

    # ── wire format ───────────────────────────────────────────────
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
            "type": self.category,
            "metadata": dict(self.metadata),
            "source": self.source_label,
        }

    def to_json(self) -> str:
        """Canonical JSON: stable key order, used for equality-based freshness."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CanonicalObject":
        if not isinstance(data, Mapping):
            raise SchemaError("canonical object must be a JSON object")
        category = str(data.get("type") or "other").lower()
        if category not in CATEGORIES:
            category = "other"
        meta = data.get("metadata")
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            image_url=str(data.get("imageUrl") or ""),
            category=category,
            metadata=dict(meta) if isinstance(meta, Mapping) else {},
            source_label=str(data.get("source") or SOURCE_NASA),
        )

    @classmethod
    def from_json(cls, text: str) -> "CanonicalObject":
        try:
            data = json.loads(text)
        except ValueError as e:
            raise SchemaError(f"invalid canonical JSON: {e}") from e
        return cls.from_dict(data)


@dataclass(frozen=True)
class IndexEntry:
    """One row of content_index.json."""
    id: str
    title: str
    category: str = "other"
    path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IndexEntry":
        category = str(data.get("type") or "other").lower()
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            category=category if category in CATEGORIES else "other",
            path=data.get("path"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "title": self.title, "type": self.category}
        if self.path is not None:
            out["path"] = self.path
        return out

    def matches(self, query: str) -> bool:
        q = query.lower()
        return q in self.title.lower() or q in self.category.lower() or q in self.id.lower()

    def to_object(self) -> "CanonicalObject":
        """Minimal object for index rows that have no bundled detail file."""
        return CanonicalObject(
            id=self.id,
            title=self.title,
            description="",
            image_url="",
            category=self.category,
            source_label=SOURCE_LOCAL,
        )


def parse_index(rows: Any) -> List[IndexEntry]:
    if isinstance(rows, Mapping):
        # some generators wrap the list: {"data_version": ..., "objects": [...]}
        rows = rows.get("objects") or rows.get("items") or []
    if not isinstance(rows, list):
        raise SchemaError("content index must be a JSON list")
    return [IndexEntry.from_dict(r) for r in rows if isinstance(r, Mapping)]


# Shown when the featured object cannot be fetched and nothing is cached.
FEATURED_FALLBACK: Final[CanonicalObject] = CanonicalObject(
    id="fallback",
    title="Welcome to the Cosmos",
    description=(
        "Explore the wonders of the universe. Connect to the internet to see "
        "today's Astronomy Picture of the Day."
    ),
    image_url="",
    category="galaxy",
    metadata={"distance": UNKNOWN, "constellation": UNKNOWN},
    source_label=SOURCE_LOCAL,
)
