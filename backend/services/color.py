"""Hue/saturation helpers shared by the sync and scene engines.

Colors travel through the system as plain dicts: ``{"hue": 0-359, "saturation": 0-1}``.
"""


def clamp(value, low, high):
    return max(low, min(high, value))


def make_color(hue, saturation):
    return {"hue": hue % 360, "saturation": clamp(saturation, 0.0, 1.0)}


def interpolate_hue(h1, h2, t):
    """Interpolate between two hues along the shorter arc of the wheel.

    Args:
        h1, h2: Hues in degrees.
        t: Blend factor, 0.0 returns h1 and 1.0 returns h2.

    Returns:
        Hue in [0, 360).
    """
    diff = (h2 - h1) % 360
    if diff > 180:
        diff -= 360
    return (h1 + diff * t) % 360


def interpolate_color(c1, c2, t):
    """Blend two colors: shortest-arc hue, linear saturation."""
    return {
        "hue": interpolate_hue(c1["hue"], c2["hue"], t),
        "saturation": c1["saturation"] + (c2["saturation"] - c1["saturation"]) * t,
    }


def hsv_to_rgb(h, s, v):
    """Convert HSV to RGB.

    Args:
        h: Hue, 0.0-1.0 (wraps around).
        s: Saturation, 0.0-1.0.
        v: Value, 0.0-1.0.

    Returns:
        Tuple of (r, g, b) with values 0-255.
    """
    h = h % 1.0
    if s == 0.0:
        val = int(v * 255)
        return (val, val, val)

    i = int(h * 6.0)
    f = (h * 6.0) - i
    p = v * (1.0 - s)
    q = v * (1.0 - s * f)
    t = v * (1.0 - s * (1.0 - f))

    i = i % 6
    if i == 0:
        r, g, b = v, t, p
    elif i == 1:
        r, g, b = q, v, p
    elif i == 2:
        r, g, b = p, v, t
    elif i == 3:
        r, g, b = p, q, v
    elif i == 4:
        r, g, b = t, p, v
    else:
        r, g, b = v, p, q

    return (int(r * 255), int(g * 255), int(b * 255))


def rgb_to_hue_saturation(r, g, b):
    """Inverse of hsv_to_rgb for reported device state, ignoring value."""
    r, g, b = r / 255.0, g / 255.0, b / 255.0
    high = max(r, g, b)
    low = min(r, g, b)
    delta = high - low
    if delta == 0:
        return make_color(0, 0.0)
    if high == r:
        hue = 60 * (((g - b) / delta) % 6)
    elif high == g:
        hue = 60 * (((b - r) / delta) + 2)
    else:
        hue = 60 * (((r - g) / delta) + 4)
    return make_color(round(hue), delta / high)
