"""Real-time message channel between the server and connected UIs.

Every message is an envelope ``{"type": ..., "data": ...}``.  The transport
(Flask-SocketIO in app.py) is injected as an emit function, so this module
only knows about clients, message types and routing:

  client -> server   BEAT_DETECTED, FREQUENCY_UPDATE, SONG_SECTION,
                     SETTINGS_UPDATE, REQUEST_STATUS, PING
  server -> client   INIT, DEVICE_UPDATE, DEVICES_UPDATE, SCENE_UPDATE,
                     SETTINGS_UPDATE, CONNECTION_STATUS, STATUS_UPDATE,
                     BEAT_SYNC, FREQUENCY_SYNC, SONG_SECTION_SYNC, PONG, ERROR
"""

import logging
import threading
import time
import uuid

from services import events as topics
from services.audio_features import FFT_SIZE
from services.audio_input import SMOOTHING_TIME_CONSTANT
from services.validation import ValidationError

logger = logging.getLogger(__name__)


def _noop_emit(message, to=None, skip_sid=None):
    pass


class Broadcaster:
    """Tracks connected clients and routes channel messages.

    Args:
        events: EventBus whose topics are forwarded to every client.
        sync_engine: Receives analysis results sent by clients.
        lights: LightService, for status replies.
        scenes: Optional SceneEngine, for status replies.
        emit: emit(message, to=None, skip_sid=None) transport function.
    """

    def __init__(self, events, sync_engine, lights, scenes=None, emit=None):
        self.sync_engine = sync_engine
        self.lights = lights
        self.scenes = scenes
        self._emit = emit or _noop_emit
        self._lock = threading.Lock()
        self._clients = {}  # sid -> client info
        self._started = time.time()
        self.messages_received = 0
        self.messages_sent = 0

        for topic in topics.TOPICS:
            events.subscribe(topic, self._forwarder(topic))

    def _forwarder(self, topic):
        def forward(payload):
            self.broadcast(topic, payload)
        return forward

    def set_emitter(self, emit):
        self._emit = emit

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, sid, message_type, data):
        self._emit({"type": message_type, "data": data}, to=sid)
        with self._lock:
            self.messages_sent += 1

    def broadcast(self, message_type, data, skip_sid=None):
        """Send to every connected client (optionally except one)."""
        with self._lock:
            recipients = len(self._clients) - (1 if skip_sid in self._clients else 0)
        if recipients <= 0:
            return
        self._emit({"type": message_type, "data": data}, skip_sid=skip_sid)
        with self._lock:
            self.messages_sent += recipients

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @property
    def client_count(self):
        with self._lock:
            return len(self._clients)

    def connect(self, sid):
        """Register a client and send it INIT with the current configuration."""
        client_id = uuid.uuid4().hex
        with self._lock:
            self._clients[sid] = {
                "client_id": client_id,
                "connected_at": time.time(),
                "last_ping": None,
                "latency_ms": None,
            }
        settings = self.sync_engine.get_settings()
        logger.info("Client connected: %s (%d total)", client_id, self.client_count)
        self.send(sid, "INIT", {
            "client_id": client_id,
            "config": {
                "analysis_settings": {
                    "fft_size": FFT_SIZE,
                    "smoothing_time_constant": SMOOTHING_TIME_CONSTANT,
                    "beat_detection_threshold": settings["beat_detection_threshold"],
                },
                "sync_settings": settings,
            },
            "devices": self.lights.get_devices(),
            "active_scene_id": self.scenes.active_scene_id if self.scenes else None,
        })
        return client_id

    def disconnect(self, sid):
        with self._lock:
            client = self._clients.pop(sid, None)
        if client:
            logger.info("Client disconnected: %s (%d remaining)", client["client_id"], self.client_count)

    # ------------------------------------------------------------------
    # Incoming messages
    # ------------------------------------------------------------------

    def handle_message(self, sid, message):
        """Route one client message.  Errors go back to the sender as ERROR."""
        with self._lock:
            self.messages_received += 1
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            self.send(sid, "ERROR", {"message": "Messages must be objects with a type"})
            return
        message_type = message["type"]
        data = message.get("data") or {}
        handler = getattr(self, f"_on_{message_type.lower()}", None)
        if handler is None:
            logger.warning("Unknown message type: %s", message_type)
            self.send(sid, "ERROR", {"message": f"Unknown message type: {message_type}"})
            return
        try:
            handler(sid, data)
        except ValidationError as exc:
            self.send(sid, "ERROR", {"message": exc.message, "field": exc.field})
        except Exception:
            logger.exception("Error handling %s message", message_type)
            self.send(sid, "ERROR", {"message": f"Failed to handle {message_type}"})

    def _on_beat_detected(self, sid, data):
        self.sync_engine.handle_beat(data)
        self.broadcast("BEAT_SYNC", data, skip_sid=sid)

    def _on_frequency_update(self, sid, data):
        self.sync_engine.handle_frequency(data)
        if self.client_count > 1:
            self.broadcast("FREQUENCY_SYNC", data, skip_sid=sid)

    def _on_song_section(self, sid, data):
        self.sync_engine.handle_section(data)
        self.broadcast("SONG_SECTION_SYNC", data, skip_sid=sid)

    def _on_settings_update(self, sid, data):
        # The engine publishes SETTINGS_UPDATE, which reaches every client.
        self.sync_engine.update_settings(data)

    def _on_request_status(self, sid, data):
        self.send(sid, "STATUS_UPDATE", self.status())

    def _on_ping(self, sid, data):
        server_time = time.time() * 1000
        sent = data.get("timestamp")
        latency = server_time - sent if isinstance(sent, (int, float)) else None
        with self._lock:
            client = self._clients.get(sid)
            if client is not None:
                client["last_ping"] = server_time
                client["latency_ms"] = latency
        self.send(sid, "PONG", {"timestamp": sent, "server_time": server_time, "latency_ms": latency})

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self):
        return {
            "lights": self.lights.get_status(),
            "sync_settings": self.sync_engine.get_settings(),
            "active_scene_id": self.scenes.active_scene_id if self.scenes else None,
            "connected_clients": self.client_count,
        }

    def stats(self):
        with self._lock:
            clients = [dict(c) for c in self._clients.values()]
            received = self.messages_received
            sent = self.messages_sent
        return {
            "connected_clients": len(clients),
            "clients": clients,
            "messages_received": received,
            "messages_sent": sent,
            "uptime_s": round(time.time() - self._started, 1),
        }
