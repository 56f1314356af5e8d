# tests/conftest.py
from __future__ import annotations

"""
Pytest configuration for the astro-edge suite.

- Registers Hypothesis profiles for local dev and CI.
- Provides an in-process stand-in for requests.Session so neither the proxy
  nor the client repository ever touches the network.
- Builds the Flask proxy with a fake clock and a disabled rate limiter.
"""

import os
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests
from hypothesis import settings, HealthCheck

from astro_edge.core.upstream import NasaAdapter
from astro_edge.main import create_app
from astro_edge.utils.cache import EdgeCache
from astro_edge.utils.config import load_config
from astro_edge.utils.ratelimit import RateLimiter


# ──────────────────────────────────────────────────────────────────────────────
# Hypothesis profiles
# ──────────────────────────────────────────────────────────────────────────────
settings.register_profile(
    "dev",
    settings(
        deadline=None,           # avoid flaky timeouts on slower runners
        max_examples=60,         # fast local runs
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    ),
)
settings.register_profile(
    "ci",
    settings(
        deadline=None,
        max_examples=120,        # a bit more coverage in CI
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    ),
)

_profile = (
    "ci"
    if (os.getenv("CI") or os.getenv("GITHUB_ACTIONS"))
    else os.getenv("HYPOTHESIS_PROFILE", "dev")
)
settings.load_profile(_profile)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "slow: mark test as slow")
    config.addinivalue_line("filterwarnings", "ignore::DeprecationWarning")


def pytest_report_header(config: pytest.Config) -> str:
    return f"Hypothesis profile: '{_profile}'"


# ──────────────────────────────────────────────────────────────────────────────
# Fake HTTP
# ──────────────────────────────────────────────────────────────────────────────
class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        *,
        json_body: Any = None,
        content: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        reason: str = "",
    ):
        self.status_code = status_code
        self._json = json_body
        self.content = content
        self.headers = headers or {}
        self.reason = reason
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Duck-typed requests.Session: exact-URL routes, everything else is a 404."""

    def __init__(self):
        self.routes: Dict[str, Any] = {}
        self.calls: List[SimpleNamespace] = []
        self.closed = False

    @staticmethod
    def response(status: int = 200, *, json: Any = None, content: bytes = b"",
                 headers: Optional[Dict[str, str]] = None, reason: str = "") -> FakeResponse:
        return FakeResponse(status, json_body=json, content=content, headers=headers, reason=reason)

    def respond(self, url: str, status: int = 200, **kw: Any) -> None:
        self.routes[url] = self.response(status, **kw)

    def fail(self, url: str, exc: BaseException) -> None:
        self.routes[url] = exc

    def on(self, url: str, handler: Callable[[str, Optional[dict]], FakeResponse]) -> None:
        self.routes[url] = handler

    def calls_to(self, url: str) -> List[SimpleNamespace]:
        return [c for c in self.calls if c.url == url]

    def get(self, url, params=None, headers=None, timeout=None, stream=False, allow_redirects=True):
        self.calls.append(SimpleNamespace(url=url, params=params, headers=headers, timeout=timeout,
                                          stream=stream, allow_redirects=allow_redirects))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, reason="Not Found")
        if isinstance(route, BaseException):
            raise route
        if callable(route):
            return route(url, params)
        return route

    def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ──────────────────────────────────────────────────────────────────────────────
# Global fixtures
# ──────────────────────────────────────────────────────────────────────────────
APOD_URL = "https://api.nasa.gov/planetary/apod"
SEARCH_URL = "https://images-api.nasa.gov/search"
EDGE_BASE = "https://edge.test"


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def nasa(session: FakeSession) -> NasaAdapter:
    return NasaAdapter(api_key="TEST_KEY", session=session)


@pytest.fixture
def edge_cache(clock: FakeClock):
    cache = EdgeCache(max_entries=64, clock=clock)
    yield cache
    cache.close()


@pytest.fixture
def edge_settings():
    cfg = load_config(path=os.devnull + ".missing.yaml", env={})
    cfg.edge.public_base_url = EDGE_BASE
    return cfg


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter({"lookup": 60, "relay": 240}, disabled=True, allowlist=())


@pytest.fixture
def app(edge_settings, nasa: NasaAdapter, edge_cache: EdgeCache, limiter: RateLimiter):
    return create_app(edge_settings, adapter=nasa, cache=edge_cache, limiter=limiter)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def transport_error() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")
