# tests/test_bundle.py
from __future__ import annotations

import json

from astro_edge.client.bundle import LocalBundle


def test_shipped_bundle_is_consistent() -> None:
    bundle = LocalBundle()
    entries = bundle.index()
    assert entries, "content_index.json should ship with the package"
    ids = {e.id for e in entries}
    assert {"mars", "andromeda", "orion-nebula"} <= ids
    for e in entries:
        obj = bundle.get(e.id)
        if obj is not None:
            assert obj.id == e.id
            assert obj.category == e.category
            assert obj.source_label == "Local"


def test_search_and_by_type() -> None:
    bundle = LocalBundle()
    assert [e.id for e in bundle.search("NEBULA")] == ["orion-nebula", "crab-nebula"]
    assert {e.id for e in bundle.by_type("planet")} == {"mars", "jupiter"}
    assert bundle.search("   ") == []


def test_unsafe_or_missing_ids(tmp_path) -> None:
    bundle = LocalBundle(tmp_path)
    assert bundle.get("../etc/passwd") is None
    assert bundle.get("") is None
    assert "mars" not in bundle
    assert bundle.index() == []


def test_unreadable_object_is_skipped(tmp_path) -> None:
    (tmp_path / "objects").mkdir()
    (tmp_path / "objects" / "bad.json").write_text("{nope", encoding="utf-8")
    (tmp_path / "objects" / "ok.json").write_text(json.dumps({"id": "ok", "title": "OK", "type": "star"}),
                                                  encoding="utf-8")
    bundle = LocalBundle(tmp_path)
    assert bundle.get("bad") is None
    assert bundle.get("ok").category == "star"
