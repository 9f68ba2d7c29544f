"""In-process publish/subscribe for state-change notifications.

The set of topics is fixed; publishing anything else is a programming error.
Subscribers are called synchronously on the publisher's thread, so they
must be quick (the broadcast layer just hands payloads to socket emits).
"""

import logging
import threading

logger = logging.getLogger(__name__)

DEVICE_UPDATE = "DEVICE_UPDATE"
DEVICES_UPDATE = "DEVICES_UPDATE"
SCENE_UPDATE = "SCENE_UPDATE"
SETTINGS_UPDATE = "SETTINGS_UPDATE"
CONNECTION_STATUS = "CONNECTION_STATUS"

TOPICS = (DEVICE_UPDATE, DEVICES_UPDATE, SCENE_UPDATE, SETTINGS_UPDATE, CONNECTION_STATUS)


class EventBus:
    """Thread-safe fan-out of payloads to per-topic subscribers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = {topic: [] for topic in TOPICS}

    def subscribe(self, topic, callback):
        """Register callback(payload) for topic.  Returns an unsubscribe function."""
        self._check(topic)
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers[topic]:
                    self._subscribers[topic].remove(callback)

        return unsubscribe

    def publish(self, topic, payload):
        self._check(topic)
        with self._lock:
            callbacks = list(self._subscribers[topic])
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber for %s failed", topic)

    @staticmethod
    def _check(topic):
        if topic not in TOPICS:
            raise ValueError(f"Unknown topic '{topic}'. Must be one of {TOPICS}")
