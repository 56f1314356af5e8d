# astro_edge/version.py
from __future__ import annotations
import os

# Single place to bump the service version (overridable via env for CI/preview)
VERSION = os.getenv("EDGE_VERSION", "0.1.0")

# Identifies the proxy to upstream image hosts on /relay fetches
USER_AGENT = "AstroEncyclopedia/1.0"
