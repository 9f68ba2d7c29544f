import copy
import threading
import time

import pytest

from services.events import EventBus
from services.hub import HubError


def make_light(light_id, name=None, color=True, brightness=True, on=True, level=50, hue=None):
    return {
        "id": light_id,
        "name": name or light_id,
        "capabilities": {
            "supports_color": color,
            "supports_brightness": brightness,
            "color_temperature_range": None,
        },
        "state": {
            "on": on,
            "brightness": level,
            "color": {"hue": hue, "saturation": 1.0} if hue is not None else None,
        },
    }


class FakeHub:
    """Records every lamp call with a monotonic timestamp."""

    def __init__(self, lights=None, fail_ids=()):
        self.lights = lights or []
        self.fail_ids = set(fail_ids)
        self.access_token = "token"
        self.reachable = True
        self.connect_count = 0
        self.calls = []
        self._lock = threading.Lock()

    def connect(self):
        if not self.reachable:
            raise HubError("hub unreachable")
        self.connect_count += 1

    def ping(self):
        if not self.reachable:
            raise HubError("hub unreachable")

    def close(self):
        pass

    def list_lights(self):
        if not self.reachable:
            raise HubError("hub unreachable")
        return copy.deepcopy(self.lights)

    def _record(self, method, device_id, *args):
        with self._lock:
            self.calls.append((time.monotonic(), method, device_id, args))
        if device_id in self.fail_ids:
            raise HubError(f"{device_id} did not answer")

    def set_on(self, device_id, on):
        self._record("set_on", device_id, on)

    def set_color(self, device_id, hue, saturation, transition_ms=None):
        self._record("set_color", device_id, hue, saturation, transition_ms)

    def set_brightness(self, device_id, level, transition_ms=None):
        self._record("set_brightness", device_id, level, transition_ms)

    def calls_for(self, device_id):
        return [(method, args) for _t, method, d, args in self.calls if d == device_id]


class FakeStore:
    """In-memory stand-in for the db module's key-value helpers."""

    def __init__(self):
        self.data = {}

    def get_value(self, namespace, key, default=None):
        return copy.deepcopy(self.data.get(namespace, {}).get(key, default))

    def get_namespace(self, namespace):
        return copy.deepcopy(self.data.get(namespace, {}))

    def set_values(self, namespace, values):
        self.data.setdefault(namespace, {}).update(copy.deepcopy(values))

    def set_value(self, namespace, key, value):
        self.set_values(namespace, {key: value})

    def delete_namespace(self, namespace):
        self.data.pop(namespace, None)


class RecordingLights:
    """LightService stand-in for engines that only read devices and send updates."""

    def __init__(self, devices=None):
        self.events = EventBus()
        self.devices = devices or []
        self.updates = []
        self.batches = []
        self.commands = []
        self._lock = threading.Lock()

    def get_devices(self):
        devices = copy.deepcopy(self.devices)
        for d in devices:
            d.setdefault("participates", True)
        return devices

    def update_lights(self, update):
        with self._lock:
            self.updates.append(copy.deepcopy(update))

    def update_lights_batch(self, updates):
        with self._lock:
            self.batches.append(copy.deepcopy(updates))

    def execute_command(self, command):
        with self._lock:
            self.commands.append(copy.deepcopy(command))

    def run_strobe(self, stop):
        with self._lock:
            self.commands.append({"type": "STROBE"})


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def store():
    return FakeStore()

