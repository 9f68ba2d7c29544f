"""IKEA DIRIGERA hub client over its local REST API.

The hub serves HTTPS with a self-signed certificate on port 8443.  Every
call is bounded by ``timeout`` so a dead hub can never stall the command
queue; transport failures surface as HubError.

Pairing uses the hub's PKCE flow: request a code, the user presses the
action button on the hub, then the code is exchanged for a bearer token.
"""

import base64
import hashlib
import logging
import secrets
import socket
import time

import requests
import urllib3

from services.hub import HubError

logger = logging.getLogger(__name__)

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

API_PORT = 8443
API_VERSION = "v1"
AUTH_AUDIENCE = "homesmart.local"
PAIRING_TIMEOUT = 60  # seconds to wait for the button press
PAIRING_POLL = 1.0


class DirigeraHub:
    """Talks to one DIRIGERA gateway."""

    def __init__(self, gateway_ip, access_token="", timeout=5.0):
        self.gateway_ip = gateway_ip
        self.access_token = access_token
        self.timeout = timeout
        self._session = requests.Session()
        self._session.verify = False

    @property
    def base_url(self):
        return f"https://{self.gateway_ip}:{API_PORT}/{API_VERSION}"

    @property
    def headers(self):
        return {"Authorization": f"Bearer {self.access_token}"}

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method, path, **kwargs):
        if not self.gateway_ip:
            raise HubError("DIRIGERA gateway IP is not configured")
        try:
            resp = self._session.request(
                method, f"{self.base_url}{path}",
                headers=self.headers, timeout=self.timeout, **kwargs,
            )
            resp.raise_for_status()
        except requests.Timeout as exc:
            raise HubError(f"{method} {path} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise HubError(f"{method} {path} failed: {exc}") from exc
        if not resp.content:
            return None
        return resp.json()

    def _patch_attributes(self, device_id, attributes, transition_ms=None):
        body = {"attributes": attributes}
        if transition_ms is not None:
            body["transitionTime"] = int(transition_ms)
        self._request("PATCH", f"/devices/{device_id}", json=[body])

    # ------------------------------------------------------------------
    # Hub driver interface
    # ------------------------------------------------------------------

    def connect(self):
        """Verify the token by fetching the home; raises HubError on failure."""
        if not self.access_token:
            raise HubError("No DIRIGERA access token; pair with the hub first")
        self.ping()
        logger.info("Connected to DIRIGERA hub at %s", self.gateway_ip)

    def ping(self):
        self._request("GET", "/home")

    def close(self):
        self._session.close()

    def list_lights(self):
        devices = self._request("GET", "/devices") or []
        lights = [self.to_fixture(d) for d in devices if d.get("deviceType") == "light"]
        logger.debug("DIRIGERA returned %d light(s)", len(lights))
        return lights

    def set_on(self, device_id, on):
        self._patch_attributes(device_id, {"isOn": bool(on)})

    def set_color(self, device_id, hue, saturation, transition_ms=None):
        self._patch_attributes(
            device_id,
            {"colorHue": int(round(hue)) % 360, "colorSaturation": float(saturation)},
            transition_ms,
        )

    def set_brightness(self, device_id, level, transition_ms=None):
        level = int(round(max(1, min(100, level))))
        self._patch_attributes(device_id, {"lightLevel": level}, transition_ms)

    @staticmethod
    def to_fixture(device):
        """Translate a hub device document into a fixture dict."""
        attrs = device.get("attributes", {})
        receives = set(device.get("capabilities", {}).get("canReceive", []))

        supports_color = "colorHue" in receives or "colorHue" in attrs
        supports_brightness = "lightLevel" in receives or "lightLevel" in attrs
        temp_range = None
        if "colorTemperatureMin" in attrs and "colorTemperatureMax" in attrs:
            temp_range = {"min": attrs["colorTemperatureMin"], "max": attrs["colorTemperatureMax"]}

        color = None
        if attrs.get("colorHue") is not None:
            color = {"hue": attrs["colorHue"], "saturation": attrs.get("colorSaturation", 1)}

        return {
            "id": device["id"],
            "name": attrs.get("customName") or attrs.get("model") or "Unknown Device",
            "capabilities": {
                "supports_color": supports_color,
                "supports_brightness": supports_brightness,
                "color_temperature_range": temp_range,
            },
            "state": {
                "on": bool(attrs.get("isOn", False)),
                "brightness": attrs.get("lightLevel") or 0,
                "color": color,
            },
        }

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------

    def authenticate(self, timeout=PAIRING_TIMEOUT):
        """Run the button-press pairing flow and return a new access token.

        Blocks until the action button on the hub is pressed or the
        timeout expires (HubError).
        """
        verifier = secrets.token_urlsafe(64)[:128]
        challenge = base64.urlsafe_b64encode(
            hashlib.sha256(verifier.encode("ascii")).digest()
        ).decode("ascii").rstrip("=")

        self.access_token = ""
        code = (self._request("GET", "/oauth/authorize", params={
            "audience": AUTH_AUDIENCE,
            "response_type": "code",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }) or {}).get("code")
        if not code:
            raise HubError("Hub did not return an authorization code")

        logger.info("Press the action button on the DIRIGERA hub to pair...")
        deadline = time.time() + timeout
        while time.time() < deadline:
            try:
                resp = self._request("POST", "/oauth/token", data={
                    "code": code,
                    "name": socket.gethostname(),
                    "grant_type": "authorization_code",
                    "code_verifier": verifier,
                })
            except HubError:
                time.sleep(PAIRING_POLL)
                continue
            token = (resp or {}).get("access_token")
            if token:
                self.access_token = token
                logger.info("DIRIGERA pairing successful")
                return token
            time.sleep(PAIRING_POLL)
        raise HubError("Timed out waiting for the hub button press")
