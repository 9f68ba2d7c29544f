"""Diagnostic light patterns used to check that fixtures respond.

A pattern runs on a background thread and can be interrupted at any step.
"""

import logging
import threading

from services.validation import TEST_TYPES, ValidationError

logger = logging.getLogger(__name__)

NEUTRAL = {"color": {"hue": 60, "saturation": 0.1}, "brightness": 50, "transition_ms": 500}

RAINBOW_STEP_DEG = 30
RAINBOW_BRIGHTNESS = 80
RAINBOW_TRANSITION_MS = 200
RAINBOW_DELAY_S = 0.3

PULSE_COUNT = 5
PULSE_RETURN_DELAY_MS = 200
PULSE_DELAY_S = 0.4

STOP_JOIN_TIMEOUT_S = 1.0


class TestPatternRunner:
    __test__ = False  # not a pytest class

    def __init__(self, lights, scenes=None):
        self.lights = lights
        self.scenes = scenes
        self._stop = threading.Event()
        self._thread = None
        self.current = None

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self, test_type):
        """Start a pattern, replacing any running one.  Raises ValidationError."""
        if test_type not in TEST_TYPES:
            raise ValidationError("type", f"Invalid test type. Must be one of: {', '.join(TEST_TYPES)}")
        self.stop(reset=False)
        if self.scenes is not None:
            self.scenes.stop()

        self._stop = threading.Event()
        self.current = test_type
        target = getattr(self, f"_run_{test_type}")
        self._thread = threading.Thread(target=self._guarded, args=(target, self._stop),
                                        daemon=True, name=f"test-{test_type}")
        self._thread.start()
        logger.info("Test pattern started: %s", test_type)
        return self._thread

    def stop(self, reset=True):
        """Interrupt the pattern; with reset, also stop scenes and go neutral."""
        self._stop.set()
        self.current = None
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=STOP_JOIN_TIMEOUT_S)
        if not reset:
            return
        if self.scenes is not None:
            self.scenes.stop()
        self.lights.update_lights(dict(NEUTRAL))
        logger.info("Test pattern stopped, lights reset to neutral")

    def _guarded(self, target, stop):
        try:
            target(stop)
        except Exception:
            logger.exception("Test pattern failed")

    def _run_rainbow(self, stop):
        for hue in range(0, 360, RAINBOW_STEP_DEG):
            if stop.is_set():
                return
            self.lights.update_lights({
                "color": {"hue": hue, "saturation": 1.0},
                "brightness": RAINBOW_BRIGHTNESS,
                "transition_ms": RAINBOW_TRANSITION_MS,
            })
            stop.wait(RAINBOW_DELAY_S)
        if not stop.is_set():
            self.lights.update_lights(dict(NEUTRAL))

    def _run_pulse(self, stop):
        for _ in range(PULSE_COUNT):
            if stop.is_set():
                return
            self.lights.execute_command({
                "type": "PULSE", "brightness": 100,
                "return_to_previous": True, "return_delay_ms": PULSE_RETURN_DELAY_MS,
            })
            stop.wait(PULSE_DELAY_S)

    def _run_strobe(self, stop):
        self.lights.run_strobe(stop)
