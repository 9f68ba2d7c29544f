"""Govee LAN UDP hub driver.

Uses the Govee LAN protocol (UDP multicast discovery + direct UDP commands)
and exposes the same driver interface as the DIRIGERA client, so Govee
lamps can be driven by the same actuation layer.

Protocol reference:
  - Discovery: multicast to 239.255.255.250:4001, listen on 4002
  - Control:   unicast UDP to device IP on port 4003
"""

import json
import logging
import socket
import struct
import threading
import time

from services.color import hsv_to_rgb, rgb_to_hue_saturation
from services.hub import HubError

logger = logging.getLogger(__name__)

MULTICAST_ADDR = "239.255.255.250"
SCAN_PORT = 4001
LISTEN_PORT = 4002
CONTROL_PORT = 4003
SCAN_TIMEOUT = 3  # seconds to wait for discovery responses


class GoveeLanHub:
    """Controls Govee lights over the local network via UDP.

    Control calls are fire-and-forget sends; only discovery and status
    queries wait for replies, each bounded by a timeout.
    """

    def __init__(self, timeout=1.0, scan_timeout=SCAN_TIMEOUT):
        self.timeout = timeout
        self.scan_timeout = scan_timeout
        self._devices = {}  # device_id -> {device_id, ip, sku}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _scan(self):
        """Execute the UDP multicast scan and collect responses."""
        scan_msg = json.dumps({
            "msg": {"cmd": "scan", "data": {"account_topic": "reserve"}},
        }).encode("utf-8")

        listen_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        send_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        devices = []
        try:
            listen_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listen_sock.bind(("", LISTEN_PORT))
            mreq = struct.pack("4sl", socket.inet_aton(MULTICAST_ADDR), socket.INADDR_ANY)
            listen_sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)

            send_sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, struct.pack("b", 1))
            send_sock.sendto(scan_msg, (MULTICAST_ADDR, SCAN_PORT))

            deadline = time.time() + self.scan_timeout
            while True:
                remaining = deadline - time.time()
                if remaining <= 0:
                    break
                listen_sock.settimeout(remaining)
                try:
                    data, _addr = listen_sock.recvfrom(4096)
                except socket.timeout:
                    break
                device = self.parse_scan_response(data)
                if device:
                    devices.append(device)
        except OSError as exc:
            raise HubError(f"Govee LAN scan failed: {exc}") from exc
        finally:
            send_sock.close()
            listen_sock.close()

        logger.info("Govee LAN scan complete: found %d device(s)", len(devices))
        return devices

    @staticmethod
    def parse_scan_response(data):
        """Parse a scan response payload into a device dict, or None."""
        try:
            payload = json.loads(data.decode("utf-8"))
            msg = payload.get("msg", {})
            if msg.get("cmd") != "scan":
                return None
            d = msg.get("data", {})
            if d.get("ip") and d.get("device"):
                return {"device_id": d["device"], "ip": d["ip"], "sku": d.get("sku", "")}
        except (json.JSONDecodeError, UnicodeDecodeError, AttributeError) as exc:
            logger.warning("Failed to parse scan response: %s", exc)
        return None

    def _ip_for(self, device_id):
        with self._lock:
            device = self._devices.get(device_id)
        if not device:
            raise HubError(f"Unknown Govee device {device_id}")
        return device["ip"]

    # ------------------------------------------------------------------
    # Hub driver interface
    # ------------------------------------------------------------------

    def connect(self):
        self.list_lights()

    def ping(self):
        if not self._scan():
            raise HubError("No Govee devices answered the LAN scan")

    def close(self):
        pass

    def list_lights(self):
        found = self._scan()
        with self._lock:
            self._devices = {d["device_id"]: d for d in found}
        lights = []
        for d in found:
            status = self.get_status(d["ip"])
            lights.append(self.to_fixture(d, status))
        return lights

    @staticmethod
    def to_fixture(device, status=None):
        data = (status or {}).get("msg", {}).get("data", {})
        color = None
        if "color" in data:
            c = data["color"]
            color = rgb_to_hue_saturation(c.get("r", 0), c.get("g", 0), c.get("b", 0))
        return {
            "id": device["device_id"],
            "name": device.get("sku") or device["device_id"],
            "capabilities": {
                "supports_color": True,
                "supports_brightness": True,
                "color_temperature_range": {"min": 2000, "max": 9000},
            },
            "state": {
                "on": bool(data.get("onOff", 0)),
                "brightness": data.get("brightness", 0),
                "color": color,
            },
        }

    def set_on(self, device_id, on):
        self._send(self._ip_for(device_id), {
            "msg": {"cmd": "turn", "data": {"value": 1 if on else 0}},
        })

    def set_brightness(self, device_id, level, transition_ms=None):
        # Govee LAN has no transition parameter; changes apply immediately.
        value = max(1, min(100, int(round(level))))
        self._send(self._ip_for(device_id), {
            "msg": {"cmd": "brightness", "data": {"value": value}},
        })

    def set_color(self, device_id, hue, saturation, transition_ms=None):
        r, g, b = hsv_to_rgb(hue / 360.0, saturation, 1.0)
        self._send(self._ip_for(device_id), {
            "msg": {
                "cmd": "colorwc",
                "data": {"color": {"r": r, "g": g, "b": b}, "colorTemInKelvin": 0},
            }
        })

    # ------------------------------------------------------------------
    # UDP plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _send(ip, cmd_dict):
        payload = json.dumps(cmd_dict).encode("utf-8")
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.sendto(payload, (ip, CONTROL_PORT))
        except OSError as exc:
            raise HubError(f"Failed to send command to {ip}: {exc}") from exc
        finally:
            sock.close()

    def get_status(self, ip):
        """Query device status; returns the parsed response or None on timeout."""
        query = json.dumps({"msg": {"cmd": "devStatus", "data": {}}}).encode("utf-8")
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.settimeout(self.timeout)
            sock.sendto(query, (ip, CONTROL_PORT))
            data, _addr = sock.recvfrom(4096)
            return json.loads(data.decode("utf-8"))
        except socket.timeout:
            logger.debug("Status query to %s timed out", ip)
            return None
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Status query to %s failed: %s", ip, exc)
            return None
        finally:
            sock.close()
