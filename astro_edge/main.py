# astro_edge/main.py
from __future__ import annotations

import atexit
import logging
import os
import traceback
from time import perf_counter
from typing import Optional
from urllib.parse import urlsplit

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from astro_edge.api.helpers import EdgeContext
from astro_edge.api.routes import api as _api_bp
from astro_edge.core.errors import NotFound, UpstreamError, ValidationError
from astro_edge.core.schema import register_upstream_hosts
from astro_edge.core.upstream import NasaAdapter
from astro_edge.utils import metrics
from astro_edge.utils.cache import EdgeCache
from astro_edge.utils.config import AttrDict, load_config
from astro_edge.utils.ratelimit import RateLimiter
from astro_edge.version import VERSION

# ───────────────────────── helpers: logging & errors ─────────────────────────
def _configure_logging(app: Flask) -> None:
    gerr = logging.getLogger("gunicorn.error")
    if gerr.handlers:
        app.logger.handlers = gerr.handlers
        app.logger.setLevel(gerr.level)
    else:
        logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))


def _register_errors(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def _validation(e: ValidationError):
        app.logger.info("400 at %s %s: %s", request.method, request.path, e)
        return jsonify(error=str(e), details=e.errors()), 400

    @app.errorhandler(NotFound)
    def _not_found(e: NotFound):
        return jsonify(error="No results found", query=e.query), 404

    @app.errorhandler(UpstreamError)
    def _upstream(e: UpstreamError):
        app.logger.warning("upstream failure at %s %s: %r", request.method, request.path, e)
        return jsonify(error=e.message), 500

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        if e.code == 404:
            return Response("Not Found", 404, mimetype="text/plain")
        app.logger.warning("HTTP %s at %s %s: %s", e.code, request.method, request.path, e.description)
        return jsonify(error=e.description or e.name), e.code

    @app.errorhandler(Exception)
    def _any(e: Exception):
        tb = traceback.format_exc()
        app.logger.error("UNHANDLED %s at %s %s\n%s", type(e).__name__, request.method, request.path, tb)
        return jsonify(error=str(e) or "Internal Server Error"), 500


# ───────────────────────── health & ops ─────────────────────────
def _register_health(app: Flask) -> None:
    @app.route("/", methods=["GET"])
    def root():
        return jsonify(ok=True, service="astro-edge", version=VERSION, health="/health"), 200

    @app.route("/health", methods=["GET"])
    @app.route("/healthz", methods=["GET"])
    def health():
        return jsonify(ok=True, status="ok"), 200

    @app.route("/metrics", methods=["GET"])
    def metrics_endpoint():
        return metrics.metrics_response()

    @app.get("/favicon.ico")
    def _noop_favicon():
        return ("", 204)


def _route_label() -> Optional[str]:
    rule = request.url_rule
    return rule.rule if rule is not None else None


# ───────────────────────── app factory ─────────────────────────
def create_app(
    settings: Optional[AttrDict] = None,
    *,
    adapter: Optional[NasaAdapter] = None,
    cache: Optional[EdgeCache] = None,
    limiter: Optional[RateLimiter] = None,
) -> Flask:
    """
    Build the proxy. Collaborators are injectable so tests can pass a stubbed
    adapter or a cache with a fake clock; by default they are built from
    `settings` (load_config() when omitted).
    """
    settings = settings or load_config()
    app = Flask(__name__)
    app.json.sort_keys = False
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    _configure_logging(app)
    register_upstream_hosts(
        [urlsplit(settings.nasa.api_url).hostname, urlsplit(settings.nasa.images_api_url).hostname]
        + list(settings.nasa.get("extra_hosts") or [])
    )

    ctx = EdgeContext(
        settings=settings,
        adapter=adapter or NasaAdapter(
            api_key=settings.nasa.api_key,
            api_url=settings.nasa.api_url,
            images_api_url=settings.nasa.images_api_url,
            timeout=settings.nasa.timeout,
            fallback_thumbnail=settings.nasa.fallback_thumbnail,
            max_relay_bytes=int(settings.edge.relay_max_bytes),
        ),
        cache=cache or EdgeCache(
            max_entries=int(settings.edge.cache_max_entries),
            max_bytes=int(settings.edge.cache_max_bytes),
            max_item_bytes=int(settings.edge.cache_item_max_bytes),
        ),
        limiter=limiter or RateLimiter({
            "lookup": settings.ratelimit.lookup_per_min,
            "relay": settings.ratelimit.relay_per_min,
        }),
    )
    app.extensions["astro_edge"] = ctx
    atexit.register(ctx.close)

    metrics.seed()

    @app.before_request
    def _before():
        # preflight never reaches routing; CORS headers are added on the way out
        if request.method == "OPTIONS":
            return Response("", 200)
        request._t0 = perf_counter()

    @app.after_request
    def _after(resp):
        label = _route_label()
        if label is not None and hasattr(request, "_t0"):
            metrics.MET_REQUESTS.labels(route=label).inc()
            metrics.REQ_LATENCY.labels(route=label).observe(perf_counter() - request._t0)
        return resp

    _register_health(app)
    _register_errors(app)
    app.register_blueprint(_api_bp)

    cors_origin = settings.edge.cors_origin or "*"
    CORS(
        app,
        resources={r"/.*": {"origins": cors_origin}},
        supports_credentials=False,
        send_wildcard=cors_origin == "*",
        methods=["GET", "HEAD", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=["X-Cache"],
        max_age=600,
    )

    app.logger.info(
        "astro-edge %s initialized; upstream=%s images=%s featured_ttl=%ss",
        VERSION, settings.nasa.api_url, settings.nasa.images_api_url, settings.edge.featured_ttl,
    )
    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
