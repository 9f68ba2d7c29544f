"""Ambient scene animations, independent of audio.

At most one scene runs at a time.  A running scene owns one ticker thread;
every tick holds the engine lock and checks it still belongs to the
current run, so once stop() returns no further tick can reach the lights.

Spatial scenes map each fixture's room position to a phase and slide the
palette across the room:

    linear:  p = x*cos(angle) + y*sin(angle)
    radial:  p = distance from the canvas center
    random:  p = stable per-fixture hash

    index = (p*scale - elapsed_seconds*speed) mod len(palette)

and interpolate between the two palette colors around ``index``.
"""

import copy
import hashlib
import logging
import math
import random
import threading
import time

from services import events as topics
from services.color import interpolate_color
from services.scene_presets import OVERRIDABLE_FIELDS, SCENE_PRESETS
from services.validation import validate_scene_update

logger = logging.getLogger(__name__)

INITIAL_FADE_MS = 2000
DRIFT_UPDATE_FRACTION = 0.7
DRIFT_JITTER = 0.2  # +/- fraction of the scene's transition speed
SPATIAL_TICK_S = 1.0
SPATIAL_TRANSITION_MS = 1500


def spatial_phase(mode, x, y, fixture_id, angle_degrees=0):
    """Phase for a fixture at normalized (x, y)."""
    if mode == "radial":
        return math.hypot(x - 0.5, y - 0.5)
    if mode == "random":
        digest = hashlib.sha1(str(fixture_id).encode("utf-8")).digest()
        return int.from_bytes(digest[:4], "big") / 0xFFFFFFFF
    theta = math.radians(angle_degrees)
    return x * math.cos(theta) + y * math.sin(theta)


def palette_color_at(palette, index):
    """Color at a fractional palette position, wrapping at the end."""
    n = len(palette)
    index = index % n
    low = int(math.floor(index)) % n
    high = (low + 1) % n
    return interpolate_color(palette[low], palette[high], index - math.floor(index))


def compute_spatial_colors(scene, positions, elapsed_s):
    """Target color for every fixture of a spatial scene.

    Args:
        scene: Scene dict with "palette" and "spatial".
        positions: {fixture_id: (x, y)} with coordinates in [0, 1].
        elapsed_s: Seconds since the scene started.

    Returns:
        {fixture_id: color}
    """
    spatial = scene["spatial"]
    colors = {}
    for fixture_id, (x, y) in positions.items():
        p = spatial_phase(spatial["mode"], x, y, fixture_id, spatial.get("angle_degrees", 0))
        index = p * spatial.get("scale", 1.0) - elapsed_s * spatial.get("speed", 0.0)
        colors[fixture_id] = palette_color_at(scene["palette"], index)
    return colors


def tick_interval(scene):
    if scene.get("spatial"):
        return SPATIAL_TICK_S
    return scene["transition_speed_ms"] / 2000.0


class SceneEngine:
    """Runs one scene at a time against the LightService.

    Usage:
        scenes = SceneEngine(light_service, layout_service)
        scenes.start_scene("deep-ocean")
        scenes.update_scene("deep-ocean", {"brightness": 30})
        scenes.stop()
    """

    def __init__(self, lights, layout, store=None, events=None, clock=time.monotonic, rng=None):
        if store is None:
            import db as store
        self.lights = lights
        self.layout = layout
        self.events = events or lights.events
        self._store = store
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.RLock()
        self._scene = None
        self._started_at = None
        self._run_id = 0
        self._stop_event = None
        self.tick_count = 0

    # ------------------------------------------------------------------
    # Presets and overrides
    # ------------------------------------------------------------------

    def _overrides(self, scene_id):
        return self._store.get_namespace(f"scene.{scene_id}")

    def list_scenes(self):
        active_id = self.active_scene_id
        scenes = []
        for preset in SCENE_PRESETS:
            scene = copy.deepcopy(preset)
            scene.update(self._overrides(preset["id"]))
            scene["active"] = scene["id"] == active_id
            scenes.append(scene)
        return scenes

    def get_scene(self, scene_id):
        for scene in self.list_scenes():
            if scene["id"] == scene_id:
                return scene
        return None

    def update_scene(self, scene_id, data):
        """Change a scene's speed and/or brightness.

        Only fields that differ from the preset are persisted.  If the scene
        is running, the new values apply from the next tick without a
        restart.

        Returns:
            The updated scene, or None if the id is unknown.
        Raises:
            ValidationError
        """
        preset = next((s for s in SCENE_PRESETS if s["id"] == scene_id), None)
        if preset is None:
            return None
        changes = validate_scene_update(data)

        overrides = self._overrides(scene_id)
        overrides.update(changes)
        overrides = {k: v for k, v in overrides.items() if k in OVERRIDABLE_FIELDS and v != preset[k]}
        self._store.delete_namespace(f"scene.{scene_id}")
        if overrides:
            self._store.set_values(f"scene.{scene_id}", overrides)
        logger.info("Scene %s updated: %s", scene_id, changes)

        scene = self.get_scene(scene_id)
        with self._lock:
            if self._scene is not None and self._scene["id"] == scene_id:
                self._scene = scene
                if scene["type"] == "drift":
                    self._start_ticker()
        self._publish()
        return scene

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def active_scene_id(self):
        scene = self._scene
        return scene["id"] if scene else None

    @property
    def current_scene(self):
        with self._lock:
            return copy.deepcopy(self._scene)

    @property
    def is_running(self):
        return self._scene is not None

    def start_scene(self, scene_id):
        """Stop whatever is running and start scene_id.

        Returns:
            The started scene, or None if the id is unknown.
        """
        scene = self.get_scene(scene_id)
        if scene is None:
            logger.warning("Attempted to start unknown scene: %s", scene_id)
            return None

        with self._lock:
            self._stop_locked()
            self._scene = scene
            self._started_at = self._clock()
            logger.info("Starting scene: %s", scene["name"])
            self._apply_initial_state()
            if scene["type"] == "drift":
                self._start_ticker()
        self._publish()
        return scene

    def stop(self):
        with self._lock:
            was_running = self._scene is not None
            self._stop_locked()
        if was_running:
            logger.info("Scene engine stopped")
            self._publish()

    def _stop_locked(self):
        self._run_id += 1
        if self._stop_event is not None:
            self._stop_event.set()
            self._stop_event = None
        self._scene = None

    def _publish(self):
        self.events.publish(topics.SCENE_UPDATE, {
            "active_scene_id": self.active_scene_id,
            "scene": self.current_scene,
        })

    def _start_ticker(self):
        """Replace the current ticker; the scene's start time is kept."""
        if self._stop_event is not None:
            self._stop_event.set()
        self._run_id += 1
        stop_event = threading.Event()
        self._stop_event = stop_event
        thread = threading.Thread(
            target=self._ticker, args=(self._run_id, stop_event, tick_interval(self._scene)),
            daemon=True, name="scene-ticker",
        )
        thread.start()

    def _ticker(self, run_id, stop_event, interval):
        while not stop_event.wait(interval):
            with self._lock:
                if run_id != self._run_id or self._scene is None:
                    return
                try:
                    self.tick()
                except Exception:
                    logger.exception("Scene tick failed")

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def _eligible(self):
        return [
            d for d in self.lights.get_devices()
            if d["state"]["on"] and d["participates"] and d["capabilities"].get("supports_color")
        ]

    def _apply_initial_state(self):
        scene = self._scene
        devices = self._eligible()
        if not devices:
            return
        if scene.get("spatial"):
            self._spatial_tick(devices, transition_ms=INITIAL_FADE_MS)
            return
        palette = scene["palette"]
        updates = []
        for i, device in enumerate(devices):
            if scene["type"] == "static":
                color = palette[i % len(palette)]
            else:
                color = self._rng.choice(palette)
            updates.append({"device_id": device["id"], "color": dict(color),
                            "brightness": scene["brightness"], "transition_ms": INITIAL_FADE_MS})
        self.lights.update_lights_batch(updates)

    def tick(self):
        """Advance the running scene by one step."""
        scene = self._scene
        if scene is None:
            return
        self.tick_count += 1
        devices = self._eligible()
        if not devices:
            return
        if scene.get("spatial"):
            self._spatial_tick(devices)
        else:
            self._drift_tick(devices)

    def _drift_tick(self, devices):
        scene = self._scene
        speed = scene["transition_speed_ms"]
        updates = []
        for device in devices:
            if self._rng.random() > DRIFT_UPDATE_FRACTION:
                continue
            jitter = speed * DRIFT_JITTER * (2 * self._rng.random() - 1)
            updates.append({
                "device_id": device["id"],
                "color": dict(self._rng.choice(scene["palette"])),
                "brightness": scene["brightness"],
                "transition_ms": int(round(speed + jitter)),
            })
        if updates:
            self.lights.update_lights_batch(updates)

    def _spatial_tick(self, devices, transition_ms=SPATIAL_TRANSITION_MS):
        scene = self._scene
        positions = {d["id"]: self.layout.position_for(d["id"]) for d in devices}
        elapsed = self._clock() - self._started_at
        colors = compute_spatial_colors(scene, positions, elapsed)
        self.lights.update_lights_batch([
            {"device_id": device_id, "color": color,
             "brightness": scene["brightness"], "transition_ms": transition_ms}
            for device_id, color in colors.items()
        ])
