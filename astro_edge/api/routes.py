# astro_edge/api/routes.py
"""
Edge proxy routes.

- /featured  (alias /apod)         daily featured object, cache-first, X-Cache HIT|MISS
- /lookup?q=                       best-match object from the image library
- /relay?url= (alias /image-proxy) upstream asset re-served through this domain

Notes:
- Upstream results are written back to the EdgeCache with put_async; the
  response never waits on that write.
- /relay never retries. A non-2xx upstream answer is a 502, a transport
  failure is a 500; the client decides whether to ask again.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify

from astro_edge.api.helpers import edge, json_error, relay_base, require_absolute_url, require_arg
from astro_edge.core.errors import UpstreamError
from astro_edge.core.schema import CanonicalObject
from astro_edge.core.upstream import RelayPayload
from astro_edge.utils.cache import MISS, cache_key
from astro_edge.utils.metrics import MET_UPSTREAM_ERRORS, record_cache
from astro_edge.utils.ratelimit import rate_limited

log = logging.getLogger(__name__)
api = Blueprint("api", __name__)

CC_FEATURED = "public, max-age=43200"              # 12h at the HTTP layer
CC_LOOKUP = "public, max-age=86400"                # 24h at the HTTP layer
CC_RELAY = "public, max-age=31536000, immutable"   # relay targets never change


def _object_response(obj: CanonicalObject, *, hit: bool, cache_control: str) -> Response:
    resp = jsonify(obj.to_dict())
    resp.headers["X-Cache"] = "HIT" if hit else "MISS"
    resp.headers["Cache-Control"] = cache_control
    return resp


@api.get("/featured")
@api.get("/apod")
def featured():
    ctx = edge()
    key = cache_key("featured")
    obj = ctx.cache.get(key)
    hit = obj is not MISS
    record_cache("featured", hit)
    if not hit:
        try:
            obj = ctx.adapter.fetch_featured(relay_base())
        except UpstreamError:
            MET_UPSTREAM_ERRORS.labels(operation="featured").inc()
            raise
        ctx.cache.put_async(key, obj, ctx.settings.edge.featured_ttl)
    log.debug("featured %s (%s)", obj.id, "HIT" if hit else "MISS")
    return _object_response(obj, hit=hit, cache_control=CC_FEATURED)


@api.get("/lookup")
@rate_limited("lookup")
def lookup():
    ctx = edge()
    q = require_arg("q", "Missing query")
    key = cache_key("lookup", q)
    obj = ctx.cache.get(key)
    hit = obj is not MISS
    record_cache("lookup", hit)
    if not hit:
        try:
            obj = ctx.adapter.lookup(q, relay_base())
        except UpstreamError:
            MET_UPSTREAM_ERRORS.labels(operation="lookup").inc()
            raise
        ctx.cache.put_async(key, obj, ctx.settings.edge.long_ttl)
    return _object_response(obj, hit=hit, cache_control=CC_LOOKUP)


@api.get("/relay")
@api.get("/image-proxy")
@rate_limited("relay")
def relay():
    ctx = edge()
    target = require_absolute_url(require_arg("url", "Missing url param"))
    key = cache_key("relay", target)
    payload = ctx.cache.get(key)
    hit = payload is not MISS
    record_cache("relay", hit)
    if not hit:
        try:
            payload = ctx.adapter.fetch_relay(target)
        except UpstreamError as e:
            MET_UPSTREAM_ERRORS.labels(operation="relay").inc()
            if e.status is not None:
                log.warning("relay upstream HTTP %s for %s", e.status, target)
                return json_error("Failed to fetch image", 502)
            log.warning("relay fetch failed for %s: %s", target, e.message)
            return json_error("Error fetching image", 500)
        ctx.cache.put_async(key, payload, ctx.settings.edge.long_ttl, size=len(payload.body))
    return _relay_response(payload, hit=hit)


def _relay_response(payload: RelayPayload, *, hit: bool) -> Response:
    resp = Response(payload.body, status=200, content_type=payload.content_type)
    resp.headers["Cache-Control"] = CC_RELAY
    resp.headers["X-Cache"] = "HIT" if hit else "MISS"
    return resp
