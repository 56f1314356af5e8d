# astro_edge/api/helpers.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from flask import current_app, jsonify, request

from astro_edge.core.errors import ValidationError
from astro_edge.core.schema import is_private_target
from astro_edge.core.upstream import NasaAdapter
from astro_edge.utils.cache import EdgeCache
from astro_edge.utils.config import AttrDict
from astro_edge.utils.ratelimit import RateLimiter


@dataclass
class EdgeContext:
    """Per-app service handles; created once in create_app and closed on shutdown."""
    settings: AttrDict
    adapter: NasaAdapter
    cache: EdgeCache
    limiter: RateLimiter

    def close(self) -> None:
        self.cache.close()
        self.adapter.close()


def edge() -> EdgeContext:
    return current_app.extensions["astro_edge"]


def relay_base() -> str:
    """Public origin used when minting relay URLs."""
    configured = (edge().settings.edge.public_base_url or "").strip()
    return configured.rstrip("/") if configured else request.host_url.rstrip("/")


def json_error(message: str, http: int, details: Any = None):
    out: Dict[str, Any] = {"error": message}
    if details is not None:
        out["details"] = details
    return jsonify(out), http


def require_arg(name: str, message: Optional[str] = None) -> str:
    value = (request.args.get(name) or "").strip()
    if not value:
        raise ValidationError({"loc": ["query", name], "msg": message or f"Missing {name!r} parameter",
                               "type": "value_error.missing"})
    return value


def require_absolute_url(raw: str, name: str = "url") -> str:
    parts = urlsplit(raw)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValidationError({"loc": ["query", name], "msg": "url must be an absolute http(s) URL",
                               "type": "value_error.url"})
    if is_private_target(raw):
        raise ValidationError({"loc": ["query", name], "msg": "url must point at a public host",
                               "type": "value_error.url.host"})
    return raw

