import json

import pytest
import requests

from services.dirigera import DirigeraHub
from services.govee_lan import GoveeLanHub
from services.hub import HubError, create_hub


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status_code = status
        self.content = json.dumps(payload).encode() if payload is not None else b""

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def close(self):
        pass


def _hub(response=None, error=None):
    hub = DirigeraHub("192.168.1.20", "token", timeout=2.5)
    hub._session = FakeSession(response, error)
    return hub


LIGHT_DOC = {
    "id": "bulb-1",
    "deviceType": "light",
    "capabilities": {"canReceive": ["isOn", "lightLevel", "colorHue", "colorSaturation"]},
    "attributes": {
        "customName": "Desk",
        "isOn": True,
        "lightLevel": 64,
        "colorHue": 200,
        "colorSaturation": 0.5,
        "colorTemperatureMin": 4000,
        "colorTemperatureMax": 2202,
    },
}


def test_dirigera_fixture_translation():
    fixture = DirigeraHub.to_fixture(LIGHT_DOC)
    assert fixture == {
        "id": "bulb-1",
        "name": "Desk",
        "capabilities": {
            "supports_color": True,
            "supports_brightness": True,
            "color_temperature_range": {"min": 4000, "max": 2202},
        },
        "state": {"on": True, "brightness": 64, "color": {"hue": 200, "saturation": 0.5}},
    }


def test_dirigera_white_bulb_has_no_color():
    doc = {"id": "w", "attributes": {"model": "TRADFRI", "isOn": False, "lightLevel": 10},
           "capabilities": {"canReceive": ["isOn", "lightLevel"]}}
    fixture = DirigeraHub.to_fixture(doc)
    assert fixture["name"] == "TRADFRI"
    assert fixture["capabilities"]["supports_color"] is False
    assert fixture["state"]["color"] is None


def test_dirigera_lists_only_lights():
    hub = _hub(FakeResponse([LIGHT_DOC, {"id": "blind", "deviceType": "blinds", "attributes": {}}]))
    assert [f["id"] for f in hub.list_lights()] == ["bulb-1"]


def test_dirigera_patch_carries_transition_and_timeout():
    hub = _hub()
    hub.set_brightness("bulb-1", 150, transition_ms=300)
    method, url, kwargs = hub._session.requests[0]
    assert method == "PATCH"
    assert url == "https://192.168.1.20:8443/v1/devices/bulb-1"
    assert kwargs["json"] == [{"attributes": {"lightLevel": 100}, "transitionTime": 300}]
    assert kwargs["timeout"] == 2.5
    assert kwargs["headers"] == {"Authorization": "Bearer token"}


def test_dirigera_timeout_becomes_hub_error():
    hub = _hub(error=requests.Timeout("slow"))
    with pytest.raises(HubError, match="timed out"):
        hub.set_on("bulb-1", True)


def test_dirigera_http_error_becomes_hub_error():
    hub = _hub(FakeResponse({"error": "nope"}, status=401))
    with pytest.raises(HubError):
        hub.ping()


def test_dirigera_needs_token_and_address():
    with pytest.raises(HubError):
        DirigeraHub("192.168.1.20", "").connect()
    with pytest.raises(HubError):
        DirigeraHub("", "token").ping()


def test_govee_scan_response_parsing():
    data = json.dumps({"msg": {"cmd": "scan", "data": {"ip": "10.0.0.5", "device": "AA:BB", "sku": "H6008"}}})
    assert GoveeLanHub.parse_scan_response(data.encode()) == {"device_id": "AA:BB", "ip": "10.0.0.5", "sku": "H6008"}
    assert GoveeLanHub.parse_scan_response(b"not json") is None
    assert GoveeLanHub.parse_scan_response(b'{"msg": {"cmd": "devStatus"}}') is None


def test_govee_fixture_from_status():
    status = {"msg": {"cmd": "devStatus", "data": {"onOff": 1, "brightness": 40, "color": {"r": 255, "g": 0, "b": 0}}}}
    fixture = GoveeLanHub.to_fixture({"device_id": "AA:BB", "ip": "10.0.0.5", "sku": "H6008"}, status)
    assert fixture["name"] == "H6008"
    assert fixture["state"]["on"] is True
    assert fixture["state"]["brightness"] == 40
    assert fixture["state"]["color"]["hue"] == pytest.approx(0)


def test_govee_unknown_device_is_hub_error():
    with pytest.raises(HubError):
        GoveeLanHub().set_on("missing", True)


def test_govee_color_is_sent_as_rgb(monkeypatch):
    hub = GoveeLanHub()
    hub._devices = {"AA:BB": {"device_id": "AA:BB", "ip": "10.0.0.5", "sku": "H6008"}}
    sent = []
    monkeypatch.setattr(GoveeLanHub, "_send", staticmethod(lambda ip, cmd: sent.append((ip, cmd))))
    hub.set_color("AA:BB", 0, 1.0)
    ip, cmd = sent[0]
    assert ip == "10.0.0.5"
    assert cmd["msg"]["cmd"] == "colorwc"
    assert cmd["msg"]["data"]["color"] == {"r": 255, "g": 0, "b": 0}


def test_unknown_hub_kind():
    with pytest.raises(ValueError):
        create_hub("hue")
