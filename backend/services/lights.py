"""Device actuation layer: the only code that talks to the light hub.

Owns the fixture registry, a strictly serialized rate-limited command
queue, optimistic local state and the hub health check.

Every public update call works in two halves:

  1. Synchronously: validate, compute the exact list of hub calls, apply
     the change to the in-memory registry and publish a state event.
  2. Asynchronously: enqueue one unit of work that performs those calls.

Observers therefore see state changes before the hub confirms them; hub
state reported later (refresh or push) is merged last-writer-wins.

Usage:
    lights = LightService(create_hub())
    lights.initialize()
    lights.update_lights({"color": {"hue": 0, "saturation": 1}, "brightness": 80})
"""

import copy
import logging
import queue
import threading
import time
from concurrent.futures import Future

import config
from services import events as topics
from services.events import EventBus
from services.hub import HubError
from services.validation import validate_command, validate_light_update

logger = logging.getLogger(__name__)

DEFAULT_TRANSITION_MS = 100
PULSE_TRANSITION_MS = 50
PULSE_RETURN_DELAY_MS = 150
STROBE_STEPS = 10
STROBE_INTERVAL_MS = 100


class CommandQueue:
    """FIFO queue drained by one worker thread, at most N units per second.

    The gap between the end of one unit and the start of the next is at
    least ``1 / commands_per_second`` seconds.  A failing unit is logged
    and the queue moves on.
    """

    def __init__(self, commands_per_second=config.COMMANDS_PER_SECOND,
                 clock=time.monotonic, sleep=time.sleep):
        if commands_per_second <= 0:
            raise ValueError("commands_per_second must be positive")
        self.min_interval = 1.0 / commands_per_second
        self._clock = clock
        self._sleep = sleep
        self._queue = queue.Queue()
        self._last_execution = None
        self._thread = threading.Thread(target=self._run, daemon=True, name="command-queue")
        self._thread.start()

    def add(self, work, label="command"):
        """Enqueue a callable; returns a Future resolved with its result."""
        future = Future()
        self._queue.put((work, future, label))
        return future

    def pending(self):
        return self._queue.qsize()

    def stop(self):
        self._queue.put((None, None, None))
        self._thread.join(timeout=2)

    def _run(self):
        while True:
            work, future, label = self._queue.get()
            if work is None:
                return
            if self._last_execution is not None:
                wait = self.min_interval - (self._clock() - self._last_execution)
                if wait > 0:
                    self._sleep(wait)
            try:
                future.set_result(work())
            except Exception as exc:
                logger.exception("Queued %s failed", label)
                future.set_exception(exc)
            finally:
                self._last_execution = self._clock()


class LightService:
    """Fixture registry + command queue + hub connection state."""

    def __init__(self, hub, events=None, store=None,
                 commands_per_second=config.COMMANDS_PER_SECOND,
                 health_check_interval=config.HEALTH_CHECK_INTERVAL):
        if store is None:
            import db as store
        self._hub = hub
        self._store = store
        self.events = events or EventBus()
        self.queue = CommandQueue(commands_per_second)
        self.health_check_interval = health_check_interval

        self._lock = threading.RLock()
        self._devices = {}  # fixture id -> fixture dict
        self._connected = False
        self._health_stop = threading.Event()
        self._health_thread = None

        saved = self._store.get_value("selection", "device_ids")
        self._selection_saved = saved is not None
        self._selected = set(saved or [])

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self):
        return self._connected

    def _set_connected(self, connected):
        if connected != self._connected:
            self._connected = connected
            self.events.publish(topics.CONNECTION_STATUS, {"connected": connected})

    def initialize(self):
        """Connect to the hub and discover fixtures.  Never raises.

        On failure the service stays disconnected (the in-memory registry
        is kept) and the health check retries later.
        """
        token = self._store.get_value("hub", "access_token")
        if token and hasattr(self._hub, "access_token") and not self._hub.access_token:
            self._hub.access_token = token
            logger.info("Loaded hub access token from storage")
        try:
            self._hub.connect()
            self.discover_devices()
        except HubError as exc:
            logger.warning("Hub unavailable, staying disconnected: %s", exc)
            self._set_connected(False)
            return False
        self._set_connected(True)
        logger.info("Light service initialized with %d fixture(s)", len(self._devices))
        return True

    def start_health_check(self):
        if self._health_thread is not None:
            return
        self._health_stop.clear()
        self._health_thread = threading.Thread(
            target=self._health_loop, daemon=True, name="hub-health"
        )
        self._health_thread.start()

    def _health_loop(self):
        while not self._health_stop.wait(self.health_check_interval):
            self.check_health()

    def check_health(self):
        """Probe the hub once.

        A live hub gets its reported state merged into the registry; on
        failure the service is marked disconnected and re-initialized.
        """
        try:
            self._hub.ping()
            self._set_connected(True)
            self.refresh_device_states()
            return True
        except HubError as exc:
            logger.warning("Hub health check failed, attempting reconnection: %s", exc)
        except Exception:
            logger.exception("Unexpected error during hub health check")
        self._set_connected(False)
        return self.initialize()

    def authenticate(self):
        """Pair with the hub (blocking until the button press) and reconnect."""
        if not hasattr(self._hub, "authenticate"):
            raise HubError("This hub does not support pairing")
        token = self._hub.authenticate()
        self._store.set_value("hub", "access_token", token)
        self.initialize()
        return token

    def shutdown(self):
        self._health_stop.set()
        self.queue.stop()
        try:
            self._hub.close()
        except Exception:
            logger.exception("Error closing hub connection")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def discover_devices(self):
        """Rebuild the registry from the hub; raises HubError when unreachable."""
        lights = self._hub.list_lights()
        with self._lock:
            first_run = not self._selection_saved
            devices = {}
            for light in lights:
                fixture = copy.deepcopy(light)
                fixture["participates"] = first_run or fixture["id"] in self._selected
                if fixture["participates"]:
                    self._selected.add(fixture["id"])
                devices[fixture["id"]] = fixture
                logger.info("Added device: %s (%s) - brightness: %s, color: %s",
                            fixture["name"], fixture["id"],
                            fixture["capabilities"]["supports_brightness"],
                            fixture["capabilities"]["supports_color"])
            self._devices = devices
            if first_run and self._selected:
                self._save_selection()
        logger.info("Discovered %d light device(s)", len(lights))
        return self.get_devices()

    def get_devices(self):
        with self._lock:
            return [copy.deepcopy(d) for d in self._devices.values()]

    def get_device(self, device_id):
        with self._lock:
            device = self._devices.get(device_id)
            return copy.deepcopy(device) if device else None

    def get_status(self):
        devices = self.get_devices()
        return {"connected": self.is_connected, "device_count": len(devices), "devices": devices}

    def _save_selection(self):
        self._store.set_value("selection", "device_ids", sorted(self._selected))
        self._selection_saved = True

    def set_selection(self, device_ids):
        """Make exactly device_ids participate in synchronized effects."""
        wanted = set(device_ids)
        changed = []
        with self._lock:
            for device in self._devices.values():
                participates = device["id"] in wanted
                if device["participates"] != participates:
                    device["participates"] = participates
                    changed.append(copy.deepcopy(device))
            self._selected = wanted
            self._save_selection()
        logger.info("Light selection updated: %d light(s) selected", len(wanted))
        if changed:
            self.events.publish(topics.DEVICES_UPDATE, changed)

    # ------------------------------------------------------------------
    # Hub-reported state (reconciliation)
    # ------------------------------------------------------------------

    def _merge_state(self, device_id, state):
        """Apply a partial state; returns a copy of the device if anything changed."""
        device = self._devices.get(device_id)
        if device is None:
            return None
        changed = False
        for key, value in state.items():
            if device["state"].get(key) != value:
                device["state"][key] = copy.deepcopy(value)
                changed = True
        return copy.deepcopy(device) if changed else None

    def handle_device_update(self, update):
        """Merge a hub-pushed {"id", "state"} update into the registry."""
        if not update or "id" not in update:
            return
        with self._lock:
            changed = self._merge_state(update["id"], update.get("state", {}))
        if changed:
            self.events.publish(topics.DEVICE_UPDATE, changed)

    def refresh_device_states(self):
        """Poll the hub and merge reported state.  Errors are logged, not raised."""
        try:
            lights = self._hub.list_lights()
        except HubError as exc:
            logger.error("Failed to refresh device states: %s", exc)
            return
        for light in lights:
            self.handle_device_update({"id": light["id"], "state": light["state"]})
        logger.debug("Device states refreshed from hub")

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    @staticmethod
    def _plan_for(device, color=None, brightness=None, on=None, transition_ms=None):
        """Hub calls for one device, gated by its capabilities."""
        caps = device["capabilities"]
        calls = []
        if on is not None:
            calls.append(("set_on", device["id"], (on,)))
        if color is not None and caps.get("supports_color"):
            calls.append(("set_color", device["id"],
                          (color["hue"], color["saturation"], transition_ms)))
        if brightness is not None and caps.get("supports_brightness"):
            level = int(round(max(1, min(100, brightness))))
            calls.append(("set_brightness", device["id"], (level, transition_ms)))
        return calls

    @staticmethod
    def _apply_optimistic(device, color=None, brightness=None, on=None):
        caps = device["capabilities"]
        changed = False
        if on is not None:
            device["state"]["on"] = on
            changed = True
        if color is not None and caps.get("supports_color"):
            device["state"]["color"] = {"hue": color["hue"], "saturation": color["saturation"]}
            changed = True
        if brightness is not None and caps.get("supports_brightness"):
            device["state"]["brightness"] = int(round(brightness))
            changed = True
        return changed

    def update_lights(self, update):
        """Apply an update to every participating fixture that is on.

        Off fixtures are skipped unless the update sets on=True.  Color and
        brightness are each sent only to fixtures that support them.

        Raises:
            ValidationError: before anything is enqueued.

        Returns:
            Future resolved with {"sent", "failed"} once the hub calls ran.
        """
        update = validate_light_update(update)
        color = update.get("color")
        brightness = update.get("brightness")
        on = update.get("on")
        transition_ms = update.get("transition_ms", DEFAULT_TRANSITION_MS)

        plan = []
        changed = []
        with self._lock:
            for device in self._devices.values():
                if not device["participates"]:
                    continue
                if not device["state"]["on"] and on is not True:
                    logger.debug("Skipping off device: %s (%s)", device["name"], device["id"])
                    continue
                plan.extend(self._plan_for(device, color, brightness, on, transition_ms))
                if self._apply_optimistic(device, color, brightness, on):
                    changed.append(copy.deepcopy(device))

        if changed:
            self.events.publish(topics.DEVICES_UPDATE, changed)
        return self._enqueue(plan, "update_lights")

    def update_lights_batch(self, updates):
        """Per-fixture updates: [{"device_id", "color"?, "brightness"?, "transition_ms"?}].

        Runs as a single queue unit.  Fixtures that are off, unknown or not
        participating are skipped; capability gating applies per fixture.
        """
        normalized = []
        for item in updates:
            fields = {k: item[k] for k in ("color", "brightness", "transition_ms") if item.get(k) is not None}
            normalized.append((item["device_id"], validate_light_update(fields)))

        plan = []
        changed = []
        with self._lock:
            for device_id, update in normalized:
                device = self._devices.get(device_id)
                if not device or not device["participates"] or not device["state"]["on"]:
                    continue
                color = update.get("color")
                brightness = update.get("brightness")
                transition_ms = update.get("transition_ms", DEFAULT_TRANSITION_MS)
                plan.extend(self._plan_for(device, color, brightness, None, transition_ms))
                if self._apply_optimistic(device, color, brightness):
                    changed.append(copy.deepcopy(device))

        if len(changed) == 1:
            self.events.publish(topics.DEVICE_UPDATE, changed[0])
        elif changed:
            self.events.publish(topics.DEVICES_UPDATE, changed)
        return self._enqueue(plan, "update_lights_batch")

    def update_single_light(self, device_id, color=None, brightness=None, transition_ms=None):
        return self.update_lights_batch([{
            "device_id": device_id, "color": color,
            "brightness": brightness, "transition_ms": transition_ms,
        }])

    def _enqueue(self, plan, label):
        if not self._connected:
            logger.debug("Hub disconnected; %s applied locally only", label)
            future = Future()
            future.set_result({"sent": 0, "failed": 0})
            return future
        return self.queue.add(lambda: self._execute(plan, label), label)

    def _execute(self, plan, label):
        sent = failed = 0
        for method, device_id, args in plan:
            logger.debug("Lamp command: %s %s%s", device_id, method, args)
            try:
                getattr(self._hub, method)(device_id, *args)
                sent += 1
            except Exception as exc:
                failed += 1
                logger.error("Light command %s on %s failed: %s", method, device_id, exc)
        if plan:
            logger.info("%s complete: %d succeeded, %d failed", label, sent, failed)
        return {"sent": sent, "failed": failed}

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def execute_command(self, command):
        """Run a PULSE, SET_COLOR, SET_BRIGHTNESS or STROBE command."""
        command = validate_command(command)
        kind = command["type"]
        logger.info("Executing command: %s", kind)
        if kind == "PULSE":
            return self.pulse(
                command["brightness"],
                transition_ms=command.get("transition_ms", PULSE_TRANSITION_MS),
                return_to_previous=command.get("return_to_previous", True),
                return_delay_ms=command.get("return_delay_ms", PULSE_RETURN_DELAY_MS),
            )
        if kind == "SET_COLOR":
            return self.update_lights({"color": command["color"],
                                       "transition_ms": command.get("transition_ms")})
        if kind == "SET_BRIGHTNESS":
            return self.update_lights({"brightness": command["brightness"],
                                       "transition_ms": command.get("transition_ms")})
        return self.strobe()

    def pulse(self, brightness, transition_ms=PULSE_TRANSITION_MS,
              return_to_previous=True, return_delay_ms=PULSE_RETURN_DELAY_MS):
        """Flash to brightness, then optionally restore each fixture's prior level.

        The restore is scheduled on a timer so nothing waits for it.
        """
        with self._lock:
            snapshot = {
                d["id"]: max(1, d["state"].get("brightness") or 1)
                for d in self._devices.values()
                if d["participates"] and d["state"]["on"] and d["capabilities"].get("supports_brightness")
            }
        if not snapshot:
            logger.debug("No devices available for pulse command")
            return None

        future = self.update_lights({"brightness": brightness, "transition_ms": transition_ms})
        if return_to_previous:
            restore = [
                {"device_id": device_id, "brightness": level, "transition_ms": transition_ms}
                for device_id, level in snapshot.items()
            ]
            timer = threading.Timer(return_delay_ms / 1000.0, self._restore_after_pulse, args=(restore,))
            timer.daemon = True
            timer.start()
        return future

    def _restore_after_pulse(self, restore):
        try:
            self.update_lights_batch(restore)
        except Exception:
            logger.exception("Failed to restore brightness after pulse")

    def run_strobe(self, stop, steps=STROBE_STEPS, interval_ms=STROBE_INTERVAL_MS):
        """Alternate full/low brightness on the calling thread until done or stop is set."""
        for i in range(steps):
            if stop.is_set():
                return
            self.update_lights({"brightness": 100 if i % 2 == 0 else 10, "transition_ms": 0})
            stop.wait(interval_ms / 1000.0)

    def strobe(self, steps=STROBE_STEPS, interval_ms=STROBE_INTERVAL_MS):
        """Run a strobe on a background thread; setting the returned event ends it early."""
        stop = threading.Event()

        def run():
            try:
                self.run_strobe(stop, steps, interval_ms)
            except Exception:
                logger.exception("Strobe failed")

        threading.Thread(target=run, daemon=True, name="strobe").start()
        return stop
