# astro_edge/utils/config.py
import copy
import os

import yaml


class AttrDict(dict):
    """Dict that also supports attribute access: cfg.nasa.api_key and cfg['nasa']['api_key'] both work."""
    def __getattr__(self, item):
        try:
            return self[item]
        except KeyError as e:
            raise AttributeError(item) from e
    def __setattr__(self, key, value):
        self[key] = value


def _to_attr(obj):
    if isinstance(obj, dict):
        return AttrDict({k: _to_attr(v) for k, v in obj.items()})
    if isinstance(obj, list):
        return [_to_attr(x) for x in obj]
    return obj


DEFAULTS = {
    "nasa": {
        "api_key": "DEMO_KEY",
        "api_url": "https://api.nasa.gov",
        "images_api_url": "https://images-api.nasa.gov",
        "timeout": 12.0,
        "fallback_thumbnail": "",
        "extra_hosts": [],
    },
    "edge": {
        "public_base_url": "",
        "featured_ttl": 24 * 3600,
        "long_ttl": 365 * 24 * 3600,
        "cache_max_entries": 2048,
        "cache_max_bytes": 256 * 1024 * 1024,
        "cache_item_max_bytes": 8 * 1024 * 1024,
        "relay_max_bytes": 20 * 1024 * 1024,
        "cors_origin": "*",
    },
    "ratelimit": {
        "lookup_per_min": 60,
        "relay_per_min": 240,
    },
}

# env var -> (section, key, cast)
_ENV = {
    "NASA_API_KEY": ("nasa", "api_key", str),
    "NASA_API_URL": ("nasa", "api_url", str),
    "NASA_IMAGE_API_URL": ("nasa", "images_api_url", str),
    "EDGE_UPSTREAM_TIMEOUT": ("nasa", "timeout", float),
    "EDGE_FALLBACK_THUMBNAIL": ("nasa", "fallback_thumbnail", str),
    "EDGE_PUBLIC_BASE_URL": ("edge", "public_base_url", str),
    "EDGE_FEATURED_TTL": ("edge", "featured_ttl", float),
    "EDGE_LONG_TTL": ("edge", "long_ttl", float),
    "EDGE_CACHE_MAX_ENTRIES": ("edge", "cache_max_entries", int),
    "EDGE_CACHE_MAX_BYTES": ("edge", "cache_max_bytes", int),
    "EDGE_CACHE_ITEM_MAX_BYTES": ("edge", "cache_item_max_bytes", int),
    "EDGE_RELAY_MAX_BYTES": ("edge", "relay_max_bytes", int),
    "CORS_ALLOW_ORIGIN": ("edge", "cors_origin", str),
    "EDGE_RL_LOOKUP_PER_MIN": ("ratelimit", "lookup_per_min", int),
    "EDGE_RL_RELAY_PER_MIN": ("ratelimit", "relay_per_min", int),
}


def _merge(base, override):
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(path=None, env=None):
    """
    Build the proxy settings:
      1) built-in DEFAULTS
      2) YAML at `path` (or $EDGE_CONFIG, default config/defaults.yaml), if it exists
      3) environment overrides listed in _ENV
    Returns an AttrDict for convenient access.
    """
    env = os.environ if env is None else env
    data = copy.deepcopy(DEFAULTS)

    path = path or env.get("EDGE_CONFIG", "config/defaults.yaml")
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            _merge(data, yaml.safe_load(f) or {})

    for name, (section, key, cast) in _ENV.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            data[section][key] = cast(raw)
        except ValueError as e:
            raise ValueError(f"{name}={raw!r} is not a valid {cast.__name__}") from e

    return _to_attr(data)
