from flask import Blueprint, current_app, jsonify, request

from services.validation import ValidationError

layout_bp = Blueprint("layout", __name__)


@layout_bp.get("/api/layout")
def get_layout():
    return jsonify(current_app.extensions["lightsync"].layout.get_layout())


@layout_bp.post("/api/layout")
def save_layout():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("body", "Request body must be JSON")
    layout = current_app.extensions["lightsync"].layout.save_layout(data)
    return jsonify({"success": True, "layout": layout})
