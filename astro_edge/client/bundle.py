# astro_edge/client/bundle.py
from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from astro_edge.core.errors import SchemaError
from astro_edge.core.schema import CanonicalObject, IndexEntry, parse_index

log = logging.getLogger(__name__)

INDEX_FILE = "content_index.json"
OBJECTS_DIR = "objects"

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def default_bundle_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "data" / "bundle"


class LocalBundle:
    """
    Read-only snapshot of curated objects shipped with the client.

    Layout:
        <root>/content_index.json     list of {id, title, type, path?}
        <root>/objects/<id>.json      one CanonicalObject per file

    Nothing here touches the network and nothing is ever written back; parsed
    objects are memoized since the files cannot change for an installed build.
    """

    def __init__(self, root: Union[str, Path, None] = None):
        self.root = Path(root) if root is not None else default_bundle_dir()
        self._objects: Dict[str, Optional[CanonicalObject]] = {}
        self._index: Optional[List[IndexEntry]] = None
        self._lock = threading.Lock()

    def __contains__(self, obj_id: str) -> bool:
        return self.get(obj_id) is not None

    def get(self, obj_id: str) -> Optional[CanonicalObject]:
        if not obj_id or not _SAFE_ID.match(obj_id):
            return None
        with self._lock:
            if obj_id in self._objects:
                return self._objects[obj_id]
        obj = self._load_object(obj_id)
        with self._lock:
            self._objects[obj_id] = obj
        return obj

    def _load_object(self, obj_id: str) -> Optional[CanonicalObject]:
        path = self.root / OBJECTS_DIR / f"{obj_id}.json"
        if not path.is_file():
            return None
        try:
            return CanonicalObject.from_json(path.read_text(encoding="utf-8"))
        except (OSError, SchemaError) as e:
            log.warning("bundled object %s unreadable: %s", obj_id, e)
            return None

    def index(self) -> List[IndexEntry]:
        with self._lock:
            if self._index is not None:
                return list(self._index)
        path = self.root / INDEX_FILE
        entries: List[IndexEntry] = []
        if path.is_file():
            try:
                entries = parse_index(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as e:
                log.warning("bundled content index unreadable: %s", e)
        with self._lock:
            self._index = entries
        return list(entries)

    def by_type(self, category: str) -> List[IndexEntry]:
        return [e for e in self.index() if e.category == category]

    def search(self, query: str) -> List[IndexEntry]:
        """Case-insensitive substring match on title, type and id."""
        q = (query or "").strip()
        if not q:
            return []
        return [e for e in self.index() if e.matches(q)]

