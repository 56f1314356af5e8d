# astro_edge/utils/metrics.py
from __future__ import annotations

import os
from typing import Final

from flask import Response, request
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Gauge, Histogram, generate_latest

# keep names stable, dashboards depend on them
MET_REQUESTS: Final = Counter("edge_requests_total", "Proxy requests", ["route"])
MET_CACHE: Final = Counter("edge_cache_total", "Edge cache lookups", ["op", "result"])
MET_UPSTREAM_ERRORS: Final = Counter("edge_upstream_errors_total", "Upstream failures", ["operation"])
REQ_LATENCY: Final = Histogram("edge_request_seconds", "Proxy request latency", ["route"])
GAUGE_APP_UP: Final = Gauge("edge_app_up", "1 if app is running")

SEEDED_ROUTES = ("/", "/featured", "/lookup", "/relay", "/health", "/healthz", "/metrics")


def seed() -> None:
    for route in SEEDED_ROUTES:
        MET_REQUESTS.labels(route=route).inc(0)
    for op in ("featured", "lookup", "relay"):
        MET_CACHE.labels(op=op, result="hit").inc(0)
        MET_CACHE.labels(op=op, result="miss").inc(0)
        MET_UPSTREAM_ERRORS.labels(operation=op).inc(0)
    GAUGE_APP_UP.set(1.0)


def record_cache(op: str, hit: bool) -> None:
    MET_CACHE.labels(op=op, result="hit" if hit else "miss").inc()


def _auth_ok() -> bool:
    auth = request.authorization
    user = os.getenv("METRICS_USER", "")
    pw = os.getenv("METRICS_PASS", "")
    return bool(
        auth and auth.type == "basic" and auth.username == user and auth.password == pw and user and pw
    )


def metrics_response() -> Response:
    if not _auth_ok():
        return Response("Unauthorized", 401, {"WWW-Authenticate": 'Basic realm="metrics"'})
    GAUGE_APP_UP.set(1.0)
    return Response(generate_latest(REGISTRY), mimetype=CONTENT_TYPE_LATEST)
