# tests/test_ratelimit.py
from __future__ import annotations

from types import SimpleNamespace

from astro_edge.utils.ratelimit import RateLimiter, client_ident


def test_bucket_refills_over_time(clock) -> None:
    rl = RateLimiter({"relay": 60}, disabled=False, allowlist=(), clock=clock)
    for _ in range(60):
        assert rl.consume("relay", "1.2.3.4")[0]
    allowed, remaining, retry = rl.consume("relay", "1.2.3.4")
    assert (allowed, remaining, retry) == (False, 0, 1)
    clock.advance(1.0)
    assert rl.consume("relay", "1.2.3.4")[0]


def test_allowlist_disabled_and_unlimited(clock) -> None:
    rl = RateLimiter({"lookup": 1}, disabled=False, allowlist=["10.0.0.1"], clock=clock)
    assert all(rl.consume("lookup", "10.0.0.1")[0] for _ in range(5))
    assert all(rl.consume("featured", "9.9.9.9")[0] for _ in range(5))   # no limit configured
    off = RateLimiter({"lookup": 1}, disabled=True, clock=clock)
    assert all(off.consume("lookup", "9.9.9.9")[0] for _ in range(5))


def test_env_toggles(monkeypatch) -> None:
    monkeypatch.setenv("EDGE_RL_DISABLE", "yes")
    monkeypatch.setenv("EDGE_RL_ALLOWLIST", " a , b ,")
    rl = RateLimiter({"lookup": 1})
    assert rl.disabled is True
    assert rl.allowlist == {"a", "b"}


def test_client_ident_prefers_first_forwarded_hop() -> None:
    req = SimpleNamespace(headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}, remote_addr="10.0.0.1")
    assert client_ident(req) == "203.0.113.7"
    assert client_ident(SimpleNamespace(headers={}, remote_addr=None)) == "anon"
