from flask import Blueprint, current_app, jsonify, request

from services.validation import ValidationError

scenes_bp = Blueprint("scenes", __name__)


def _core():
    return current_app.extensions["lightsync"]


@scenes_bp.get("/api/scenes")
def list_scenes():
    scenes = _core().scenes
    return jsonify({"scenes": scenes.list_scenes(), "active_scene_id": scenes.active_scene_id})


@scenes_bp.put("/api/scenes/<scene_id>")
def update_scene(scene_id):
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("body", "Request body must be JSON")
    scene = _core().scenes.update_scene(scene_id, data)
    if scene is None:
        return jsonify({"error": f"Scene not found: {scene_id}"}), 404
    return jsonify(scene)


@scenes_bp.post("/api/scenes/start")
def start_scene():
    data = request.get_json(silent=True) or {}
    scene_id = data.get("scene_id") if isinstance(data, dict) else None
    if not scene_id:
        raise ValidationError("scene_id", "scene_id is required")
    core = _core()
    core.tests.stop(reset=False)
    scene = core.scenes.start_scene(scene_id)
    if scene is None:
        return jsonify({"error": f"Scene not found: {scene_id}"}), 404
    return jsonify({"success": True, "scene": scene})


@scenes_bp.post("/api/scenes/stop")
def stop_scene():
    _core().scenes.stop()
    return jsonify({"success": True})
