"""Maps audio features to light commands.

Beats become brightness pulses, frequency frames become multi-color
patterns spread across the participating fixtures, and song sections
trigger short scripted effects.  Everything goes through the LightService;
this module never talks to a hub.

Two independent rate limits keep the hub comfortable no matter how fast
frames arrive: one pulse per BEAT_INTERVAL_MS and one pattern update per
LIGHT_UPDATE_INTERVAL_MS.  Frames inside the window still feed the color
smoother so the next accepted update reflects recent history.
"""

import copy
import logging
import math
import random
import threading
import time

from services import events as topics
from services.color import clamp, make_color
from services.validation import validate_sync_settings

logger = logging.getLogger(__name__)

# -- Rate limits (ms) ----------------------------------------------------------
BEAT_INTERVAL_MS = 800
LIGHT_UPDATE_INTERVAL_MS = 3000
COLOR_CYCLE_MS = 3000
PATTERN_PERIOD_MS = 15000
WAVE_CYCLE_MS = 2000

# -- Beat pulse ----------------------------------------------------------------
BASE_BRIGHTNESS = 30
MAX_BRIGHTNESS = 100
PULSE_TRANSITION_MS = 50
PULSE_RETURN_DELAY_MS = 150

# -- Patterns ------------------------------------------------------------------
PATTERN_MIN_BRIGHTNESS = 40
PATTERN_MAX_BRIGHTNESS = 85
PATTERNS = ("alternating", "trio", "wave", "quadrant")

VIBRANT_COLORS = [
    {"hue": 0, "saturation": 0.9},    # red
    {"hue": 30, "saturation": 0.9},   # orange
    {"hue": 60, "saturation": 0.8},   # yellow
    {"hue": 120, "saturation": 0.9},  # green
    {"hue": 180, "saturation": 0.8},  # cyan
    {"hue": 240, "saturation": 0.9},  # blue
    {"hue": 270, "saturation": 0.9},  # purple
    {"hue": 300, "saturation": 0.8},  # magenta
]

MIDS_COLOR = {"hue": 120, "saturation": 0.8}
TREBLE_COLOR = {"hue": 240, "saturation": 0.9}
ACCENT_COLOR = {"hue": 60, "saturation": 0.8}

# -- Smoothing -----------------------------------------------------------------
COLOR_HISTORY_SIZE = 5

DEFAULT_SETTINGS = {
    "sensitivity": 0.7,
    "color_mode": "frequency",
    "effect_intensity": 0.8,
    "smoothing": 0.6,
    "beat_detection_threshold": 0.6,
    "color_transition_speed_ms": 200,
}


def wall_clock_ms():
    return time.time() * 1000.0


class ColorSmoother:
    """Weighted average over the last few colors, newest weighted most.

    Hue is averaged with the cosine component only, so the result is always
    0 or 180 degrees.  Saturation is a plain weighted mean.
    """

    def __init__(self, size=COLOR_HISTORY_SIZE):
        self.size = size
        self.history = []

    def reset(self):
        self.history = []

    def add(self, color):
        self.history.append(color)
        if len(self.history) > self.size:
            self.history.pop(0)
        if len(self.history) == 1:
            return dict(color)

        n = len(self.history)
        total_cos = total_sat = total_weight = 0.0
        for i, c in enumerate(self.history):
            weight = (i + 1) / n
            total_cos += math.cos(math.radians(c["hue"])) * weight
            total_sat += c["saturation"] * weight
            total_weight += weight

        hue = math.degrees(math.atan2(0, total_cos / total_weight))
        if hue < 0:
            hue += 360
        return {"hue": hue % 360, "saturation": clamp(total_sat / total_weight, 0.0, 1.0)}


# ----------------------------------------------------------------------
# Color strategies
# ----------------------------------------------------------------------

def frequency_color(bass, mids, treble, now_ms):
    """Step through the vivid palette on a clock, nudged by audio energy."""
    total = bass + mids + treble
    index = (int(now_ms // COLOR_CYCLE_MS) + int(math.floor(total * 50))) % len(VIBRANT_COLORS)
    return dict(VIBRANT_COLORS[index])


def mood_color(bass, mids, treble, rng=random):
    total = bass + mids + treble
    if total < 0.3:
        return make_color(240 + rng.random() * 60, 0.6)  # cool blues/purples
    if total < 0.6:
        return make_color(120 + rng.random() * 60, 0.7)  # greens/teals
    return make_color(rng.random() * 60, 0.8)  # warm reds/oranges/yellows


def random_color(energy, rng=random):
    return make_color(rng.random() * 360, min(1.0, 0.4 + energy * 0.6))


# ----------------------------------------------------------------------
# Pattern distribution
# ----------------------------------------------------------------------

def pattern_for(now_ms):
    return PATTERNS[int(now_ms // PATTERN_PERIOD_MS) % len(PATTERNS)]


def band_brightness(value):
    span = PATTERN_MAX_BRIGHTNESS - PATTERN_MIN_BRIGHTNESS
    return int(round(PATTERN_MIN_BRIGHTNESS + value * span))


def distribute_pattern(device_ids, bass, mids, treble, now_ms, primary):
    """Assign a color and brightness to each fixture, in order.

    Args:
        device_ids: Eligible fixture ids; order decides each fixture's slot.
        bass, mids, treble: Band energies, 0-1.
        now_ms: Wall clock in ms; selects the pattern and the wave phase.
        primary: The smoothed mapped color, used for the first slot.

    Returns:
        List of {"device_id", "color", "brightness"}.
    """
    b_bass, b_mids, b_treble = band_brightness(bass), band_brightness(mids), band_brightness(treble)
    pattern = pattern_for(now_ms)
    count = len(device_ids)
    updates = []

    for index, device_id in enumerate(device_ids):
        if pattern == "alternating":
            color, brightness = (primary, b_bass) if index % 2 == 0 else (TREBLE_COLOR, b_treble)
        elif pattern == "trio":
            color, brightness = [
                (primary, b_bass), (MIDS_COLOR, b_mids), (TREBLE_COLOR, b_treble),
            ][index % 3]
        elif pattern == "wave":
            phase = (now_ms / WAVE_CYCLE_MS) % (2 * math.pi)
            value = (math.sin(phase + index / count * 2 * math.pi) + 1) / 2
            color = primary if value > 0.5 else ACCENT_COLOR
            brightness = int(round(b_bass + value * (b_mids - b_bass)))
        else:
            color, brightness = [
                (primary, b_bass), (MIDS_COLOR, b_mids), (TREBLE_COLOR, b_treble),
                (ACCENT_COLOR, int(round((b_bass + b_mids) / 2))),
            ][index % 4]
        updates.append({"device_id": device_id, "color": dict(color), "brightness": brightness})
    return updates


class SyncEngine:
    """Turns analysis results into LightService calls.

    Usage:
        engine = SyncEngine(light_service)
        engine.handle_beat({"timestamp": ..., "intensity": 0.8, "confidence": 0.9})
        engine.handle_frequency({"bass": 0.7, "mids": 0.4, "treble": 0.2, ...})
        engine.handle_section({"type": "DROP", "confidence": 0.9, ...})
    """

    def __init__(self, lights, events=None, clock=wall_clock_ms, rng=None, sleep=None):
        self.lights = lights
        self.events = events or lights.events
        self._clock = clock
        self._rng = rng or random.Random()
        self._settings = dict(DEFAULT_SETTINGS)
        self._smoother = ColorSmoother()
        self._last_beat_update = None
        self._last_light_update = None
        self._lock = threading.Lock()
        self._effect_thread = None
        self._effect_stop = threading.Event()
        self._sleep = sleep or self._effect_stop.wait

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self):
        with self._lock:
            return dict(self._settings)

    def update_settings(self, partial):
        """Merge a validated partial update; raises ValidationError."""
        changes = validate_sync_settings(partial)
        with self._lock:
            self._settings.update(changes)
            settings = dict(self._settings)
        logger.info("Sync settings updated: %s", changes)
        self.events.publish(topics.SETTINGS_UPDATE, settings)
        return settings

    # ------------------------------------------------------------------
    # Beats
    # ------------------------------------------------------------------

    def handle_beat(self, beat):
        """Pulse on a confident beat, at most once per BEAT_INTERVAL_MS.

        Returns True if a pulse was issued.
        """
        settings = self.get_settings()
        try:
            intensity = float(beat["intensity"])
            confidence = float(beat["confidence"])
        except (KeyError, TypeError, ValueError):
            logger.debug("Ignoring malformed beat: %r", beat)
            return False
        if confidence < settings["beat_detection_threshold"]:
            return False

        now = self._clock()
        with self._lock:
            if self._last_beat_update is not None and now - self._last_beat_update < BEAT_INTERVAL_MS:
                return False
            self._last_beat_update = now

        delta = (MAX_BRIGHTNESS - BASE_BRIGHTNESS) * intensity * settings["effect_intensity"]
        target = clamp(BASE_BRIGHTNESS + delta, BASE_BRIGHTNESS, MAX_BRIGHTNESS)
        logger.info("Beat pulse: intensity=%.2f, confidence=%.2f, brightness=%.0f",
                    intensity, confidence, target)
        try:
            self.lights.execute_command({
                "type": "PULSE",
                "brightness": target,
                "transition_ms": PULSE_TRANSITION_MS,
                "return_to_previous": True,
                "return_delay_ms": PULSE_RETURN_DELAY_MS,
            })
        except Exception:
            logger.exception("Error handling beat detection")
            return False
        return True

    # ------------------------------------------------------------------
    # Frequency frames
    # ------------------------------------------------------------------

    def map_color(self, bass, mids, treble, now_ms):
        mode = self.get_settings()["color_mode"]
        if mode == "mood":
            return mood_color(bass, mids, treble, self._rng)
        if mode == "random":
            return random_color(bass + mids + treble, self._rng)
        return frequency_color(bass, mids, treble, now_ms)

    def handle_frequency(self, frame):
        """Smooth every frame; push a pattern at most once per LIGHT_UPDATE_INTERVAL_MS.

        Returns the list of per-fixture updates sent, or None.
        """
        try:
            bass = clamp(float(frame["bass"]), 0.0, 1.0)
            mids = clamp(float(frame["mids"]), 0.0, 1.0)
            treble = clamp(float(frame["treble"]), 0.0, 1.0)
        except (KeyError, TypeError, ValueError):
            logger.debug("Ignoring malformed frequency frame")
            return None

        now = self._clock()
        color = self.map_color(bass, mids, treble, now)
        with self._lock:
            due = self._last_light_update is None or now - self._last_light_update >= LIGHT_UPDATE_INTERVAL_MS
            if due:
                self._last_light_update = now
            smoothed = self._smoother.add(color)
        if not due:
            return None

        eligible = [
            d["id"] for d in self.lights.get_devices()
            if d["participates"] and d["state"]["on"] and d["capabilities"].get("supports_color")
        ]
        if not eligible:
            return None

        updates = distribute_pattern(eligible, bass, mids, treble, now, smoothed)
        transition = self.get_settings()["color_transition_speed_ms"]
        for update in updates:
            update["transition_ms"] = transition
        logger.debug("Pattern %s across %d light(s)", pattern_for(now), len(updates))
        try:
            self.lights.update_lights_batch(updates)
        except Exception:
            logger.exception("Error handling frequency update")
            return None
        return updates

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    @staticmethod
    def section_steps(section_type):
        """Scripted (update, delay_ms) steps for a section change."""
        if section_type == "DROP":
            return [
                ({"brightness": 100 if i % 2 == 0 else 20,
                  "color": {"hue": (i * 30) % 360, "saturation": 1.0},
                  "transition_ms": 0}, 80)
                for i in range(12)
            ]
        if section_type == "BUILD":
            steps = []
            for i in range(21):
                progress = i / 20
                steps.append(({
                    "brightness": 30 + 70 * progress,
                    "color": {"hue": (200 + 160 * progress) % 360, "saturation": 0.4 + 0.6 * progress},
                    "transition_ms": 150,
                }, 150))
            return steps
        if section_type == "BREAKDOWN":
            return [({"brightness": 15, "color": {"hue": 220, "saturation": 0.3}, "transition_ms": 1000}, 0)]
        if section_type == "CHORUS":
            return [({"brightness": 85, "color": {"hue": 60, "saturation": 0.9}, "transition_ms": 300}, 0)]
        return []

    def handle_section(self, section):
        """Start the effect for a section change on a background thread.

        Returns the thread, or None when there is nothing to run or an
        effect is still in progress.
        """
        section_type = (section or {}).get("type")
        steps = self.section_steps(section_type)
        logger.info("Song section detected: %s (confidence: %.2f)",
                    section_type, float((section or {}).get("confidence", 0)))
        if not steps:
            return None
        if self._effect_thread is not None and self._effect_thread.is_alive():
            logger.debug("Section effect already running; skipping %s", section_type)
            return None

        self._effect_stop.clear()
        self._effect_thread = threading.Thread(
            target=self._run_effect, args=(section_type, copy.deepcopy(steps)),
            daemon=True, name=f"section-{section_type.lower()}",
        )
        self._effect_thread.start()
        return self._effect_thread

    def _run_effect(self, section_type, steps):
        logger.info("Applying %s effect", section_type.lower())
        try:
            for update, delay_ms in steps:
                if self._effect_stop.is_set():
                    return
                self.lights.update_lights(update)
                if delay_ms:
                    self._sleep(delay_ms / 1000.0)
        except Exception:
            logger.exception("Section effect %s failed", section_type)

    def stop_effects(self):
        self._effect_stop.set()

    def reset(self):
        self.stop_effects()
        with self._lock:
            self._smoother.reset()
            self._last_beat_update = None
            self._last_light_update = None
