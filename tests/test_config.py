# tests/test_config.py
from __future__ import annotations

import pytest

from astro_edge.utils.config import DEFAULTS, load_config


def test_defaults_without_file_or_env(tmp_path) -> None:
    cfg = load_config(path=str(tmp_path / "missing.yaml"), env={})
    assert cfg.nasa.api_key == "DEMO_KEY"
    assert cfg.edge.featured_ttl == 86400
    assert cfg["ratelimit"]["lookup_per_min"] == 60
    # defaults are copied, never shared
    cfg.nasa.api_key = "changed"
    assert DEFAULTS["nasa"]["api_key"] == "DEMO_KEY"


def test_yaml_merges_over_defaults(tmp_path) -> None:
    p = tmp_path / "edge.yaml"
    p.write_text("edge:\n  public_base_url: https://cdn.example\nnasa:\n  extra_hosts: [mirror.example]\n")
    cfg = load_config(path=str(p), env={})
    assert cfg.edge.public_base_url == "https://cdn.example"
    assert cfg.edge.long_ttl == 31536000            # untouched sibling survives the merge
    assert cfg.nasa.extra_hosts == ["mirror.example"]


def test_edge_config_env_points_at_yaml(tmp_path) -> None:
    p = tmp_path / "other.yaml"
    p.write_text("ratelimit:\n  relay_per_min: 5\n")
    cfg = load_config(env={"EDGE_CONFIG": str(p)})
    assert cfg.ratelimit.relay_per_min == 5


def test_env_overrides_win(tmp_path) -> None:
    p = tmp_path / "edge.yaml"
    p.write_text("nasa:\n  api_key: FROM_YAML\n")
    cfg = load_config(path=str(p), env={
        "NASA_API_KEY": "FROM_ENV",
        "EDGE_FEATURED_TTL": "60",
        "EDGE_RL_LOOKUP_PER_MIN": "3",
        "EDGE_PUBLIC_BASE_URL": "",      # empty values are ignored
    })
    assert cfg.nasa.api_key == "FROM_ENV"
    assert cfg.edge.featured_ttl == 60.0
    assert cfg.ratelimit.lookup_per_min == 3
    assert cfg.edge.public_base_url == ""


def test_bad_env_value_is_reported(tmp_path) -> None:
    with pytest.raises(ValueError, match="EDGE_CACHE_MAX_ENTRIES"):
        load_config(path=str(tmp_path / "missing.yaml"), env={"EDGE_CACHE_MAX_ENTRIES": "lots"})


def test_attribute_access_missing_key() -> None:
    cfg = load_config(path="/nonexistent/edge.yaml", env={})
    with pytest.raises(AttributeError):
        _ = cfg.nasa.nope


def test_size_limits_from_env(tmp_path) -> None:
    cfg = load_config(path=str(tmp_path / "missing.yaml"), env={
        "EDGE_RELAY_MAX_BYTES": "1048576",
        "EDGE_CACHE_MAX_BYTES": "4194304",
        "EDGE_CACHE_ITEM_MAX_BYTES": "524288",
    })
    assert cfg.edge.relay_max_bytes == 1048576
    assert cfg.edge.cache_max_bytes == 4194304
    assert cfg.edge.cache_item_max_bytes == 524288
    assert DEFAULTS["edge"]["cache_item_max_bytes"] <= DEFAULTS["edge"]["cache_max_bytes"]
