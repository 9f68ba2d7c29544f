from flask import Blueprint, current_app, jsonify, request

from services.validation import ValidationError, validate_command, validate_light_update

lights_bp = Blueprint("lights", __name__)


def _core():
    return current_app.extensions["lightsync"]


def _body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("body", "Request body must be JSON")
    return data


@lights_bp.post("/api/lights/auth")
def authenticate():
    """Pair with the hub; blocks until the hub's action button is pressed."""
    core = _core()
    core.lights.authenticate()
    return jsonify({"message": "Paired with hub", "connected": core.lights.is_connected})


@lights_bp.get("/api/lights/status")
def status():
    core = _core()
    result = core.lights.get_status()
    result["active_scene_id"] = core.scenes.active_scene_id
    result["test_running"] = core.tests.is_running
    return jsonify(result)


@lights_bp.get("/api/lights/discover")
def discover():
    devices = _core().lights.discover_devices()
    return jsonify({"devices": devices})


@lights_bp.post("/api/lights/update")
def update_lights():
    core = _core()
    update = validate_light_update(_body())
    core.stop_manual_effects()
    core.lights.update_lights(update)
    return jsonify({"success": True})


@lights_bp.post("/api/lights/command")
def execute_command():
    core = _core()
    command = validate_command(_body())
    core.stop_manual_effects()
    core.lights.execute_command(command)
    return jsonify({"success": True, "type": command["type"]})


@lights_bp.get("/api/lights/sync/settings")
def get_sync_settings():
    return jsonify(_core().sync.get_settings())


@lights_bp.put("/api/lights/sync/settings")
def update_sync_settings():
    settings = _core().sync.update_settings(_body())
    return jsonify(settings)


@lights_bp.post("/api/lights/selection")
def set_selection():
    data = _body()
    device_ids = data.get("device_ids") if isinstance(data, dict) else None
    if not isinstance(device_ids, list) or not all(isinstance(i, str) for i in device_ids):
        raise ValidationError("device_ids", "device_ids must be a list of strings")
    core = _core()
    core.lights.set_selection(device_ids)
    return jsonify({"success": True, "devices": core.lights.get_devices()})


@lights_bp.post("/api/lights/test")
def start_test():
    data = _body()
    test_type = data.get("type") if isinstance(data, dict) else None
    _core().tests.start(test_type)
    return jsonify({"success": True, "type": test_type})


@lights_bp.post("/api/lights/test/stop")
def stop_test():
    _core().tests.stop()
    return jsonify({"success": True})
