"""Room layout: fixture positions and wall segments on a 0-100 canvas."""

import hashlib
import logging
import threading

from services.validation import validate_layout

logger = logging.getLogger(__name__)


def stable_position(fixture_id):
    """Deterministic pseudo-position in percent for a fixture with no saved spot."""
    digest = hashlib.sha1(str(fixture_id).encode("utf-8")).digest()
    x = int.from_bytes(digest[0:4], "big") / 0xFFFFFFFF * 100
    y = int.from_bytes(digest[4:8], "big") / 0xFFFFFFFF * 100
    return x, y


class LayoutService:
    def __init__(self, store=None):
        if store is None:
            import db as store
        self._store = store
        self._lock = threading.Lock()
        self._layout = {
            "lights": self._store.get_value("layout", "lights", []) or [],
            "walls": self._store.get_value("layout", "walls", []) or [],
        }

    def get_layout(self):
        with self._lock:
            return {"lights": [dict(p) for p in self._layout["lights"]],
                    "walls": [dict(w) for w in self._layout["walls"]]}

    def save_layout(self, data):
        """Validate and persist a layout.  Raises ValidationError."""
        layout = validate_layout(data)
        self._store.set_values("layout", layout)
        with self._lock:
            self._layout = layout
        logger.info("Layout saved: %d light(s), %d wall(s)", len(layout["lights"]), len(layout["walls"]))
        return self.get_layout()

    def position_for(self, fixture_id):
        """Normalized (x, y) in [0, 1] for a fixture."""
        with self._lock:
            for p in self._layout["lights"]:
                if p["id"] == fixture_id:
                    return p["x"] / 100.0, p["y"] / 100.0
        x, y = stable_position(fixture_id)
        return x / 100.0, y / 100.0
