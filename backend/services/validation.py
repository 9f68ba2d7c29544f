"""Boundary checks for everything that can reach the command queue or settings.

Validators return a normalized copy of their input and raise ValidationError
naming the offending field.  Nothing invalid is ever enqueued.
"""

from numbers import Real

COMMAND_TYPES = ("PULSE", "SET_COLOR", "SET_BRIGHTNESS", "STROBE")
COLOR_MODES = ("frequency", "mood", "random")
TEST_TYPES = ("rainbow", "pulse", "strobe")


class ValidationError(ValueError):
    def __init__(self, field, message):
        super().__init__(message)
        self.field = field
        self.message = message

    def to_dict(self):
        return {"error": self.message, "field": self.field}


def _is_number(value):
    return isinstance(value, Real) and not isinstance(value, bool)


def _number(data, field, low, high, low_inclusive=True, high_inclusive=True, label=None):
    value = data.get(field)
    name = label or field
    if not _is_number(value):
        raise ValidationError(name, f"{name} must be a number")
    too_low = value < low if low_inclusive else value <= low
    too_high = value > high if high_inclusive else value >= high
    if too_low or too_high:
        upper = high if high_inclusive else f"<{high}"
        raise ValidationError(name, f"{name} must be between {low} and {upper}")
    return value


def validate_color(color, field="color"):
    if not isinstance(color, dict):
        raise ValidationError(field, f"{field} must be an object with hue and saturation")
    hue = _number(color, "hue", 0, 360, high_inclusive=False, label=f"{field}.hue")
    saturation = _number(color, "saturation", 0, 1, label=f"{field}.saturation")
    return {"hue": hue, "saturation": saturation}


def validate_transition(data, field="transition_ms"):
    value = data.get(field)
    if value is None:
        return None
    if not _is_number(value) or value < 0:
        raise ValidationError(field, f"{field} must be a non-negative number")
    return int(value)


def validate_light_update(data):
    """Validate an update_lights() payload.

    Accepted keys: color, brightness, on, transition_ms.  At least one of
    color, brightness or on must be present.
    """
    if not isinstance(data, dict):
        raise ValidationError("body", "Request body must be a JSON object")

    update = {}
    if data.get("color") is not None:
        update["color"] = validate_color(data["color"])
    if data.get("brightness") is not None:
        update["brightness"] = _number(data, "brightness", 1, 100)
    if data.get("on") is not None:
        if not isinstance(data["on"], bool):
            raise ValidationError("on", "on must be a boolean")
        update["on"] = data["on"]
    if not update:
        raise ValidationError("body", "Update must contain color, brightness or on")
    transition = validate_transition(data)
    if transition is not None:
        update["transition_ms"] = transition
    return update


def validate_command(data):
    if not isinstance(data, dict) or not data.get("type"):
        raise ValidationError("type", "Command with type is required")
    kind = data["type"]
    if kind not in COMMAND_TYPES:
        raise ValidationError("type", f"Invalid command type. Must be one of: {', '.join(COMMAND_TYPES)}")

    command = {"type": kind}
    if data.get("color") is not None:
        command["color"] = validate_color(data["color"])
    if data.get("brightness") is not None:
        command["brightness"] = _number(data, "brightness", 1, 100)
    transition = validate_transition(data)
    if transition is not None:
        command["transition_ms"] = transition
    if "return_to_previous" in data:
        command["return_to_previous"] = bool(data["return_to_previous"])
    if data.get("return_delay_ms") is not None:
        command["return_delay_ms"] = validate_transition(data, "return_delay_ms")

    if kind == "SET_COLOR" and "color" not in command:
        raise ValidationError("color", "SET_COLOR requires a color")
    if kind in ("SET_BRIGHTNESS", "PULSE") and "brightness" not in command:
        raise ValidationError("brightness", f"{kind} requires a brightness")
    return command


def validate_sync_settings(partial):
    """Validate a partial SyncSettings update."""
    if not isinstance(partial, dict):
        raise ValidationError("body", "Settings must be a JSON object")

    known = {
        "sensitivity", "color_mode", "effect_intensity", "smoothing",
        "beat_detection_threshold", "color_transition_speed_ms",
    }
    unknown = set(partial) - known
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(field, f"Unknown setting: {field}")

    settings = {}
    for field in ("sensitivity", "effect_intensity", "smoothing", "beat_detection_threshold"):
        if field in partial:
            settings[field] = float(_number(partial, field, 0, 1))
    if "color_mode" in partial:
        if partial["color_mode"] not in COLOR_MODES:
            raise ValidationError("color_mode", "color_mode must be frequency, mood, or random")
        settings["color_mode"] = partial["color_mode"]
    if "color_transition_speed_ms" in partial:
        settings["color_transition_speed_ms"] = int(_number(partial, "color_transition_speed_ms", 0, 60000))
    return settings


def validate_scene_update(data):
    if not isinstance(data, dict):
        raise ValidationError("body", "Scene update must be a JSON object")
    updates = {}
    if data.get("transition_speed_ms") is not None:
        updates["transition_speed_ms"] = int(_number(data, "transition_speed_ms", 500, 120000))
    if data.get("brightness") is not None:
        updates["brightness"] = int(_number(data, "brightness", 1, 100))
    if not updates:
        raise ValidationError("body", "Provide transition_speed_ms and/or brightness")
    return updates


def validate_layout(data):
    if not isinstance(data, dict):
        raise ValidationError("body", "Layout must be a JSON object")
    lights = data.get("lights", [])
    walls = data.get("walls", [])
    if not isinstance(lights, list):
        raise ValidationError("lights", "lights must be a list")
    if not isinstance(walls, list):
        raise ValidationError("walls", "walls must be a list")

    positions = []
    for i, light in enumerate(lights):
        if not isinstance(light, dict) or not light.get("id"):
            raise ValidationError(f"lights[{i}].id", "Each light needs an id")
        x = _number(light, "x", 0, 100, label=f"lights[{i}].x")
        y = _number(light, "y", 0, 100, label=f"lights[{i}].y")
        positions.append({"id": str(light["id"]), "x": x, "y": y})

    segments = []
    for i, wall in enumerate(walls):
        if not isinstance(wall, dict):
            raise ValidationError(f"walls[{i}]", "Each wall must be an object")
        segment = {"id": str(wall.get("id", i))}
        for key in ("x1", "y1", "x2", "y2"):
            segment[key] = _number(wall, key, 0, 100, label=f"walls[{i}].{key}")
        segments.append(segment)
    return {"lights": positions, "walls": segments}
