"""Built-in scenes.

type "drift": fixtures keep moving between palette colors.  With a
"spatial" block the palette is laid over the room as a traveling wave
instead of picked at random per fixture.
type "static": each fixture gets one palette color and keeps it.
"""


def _palette(*pairs):
    return [{"hue": h, "saturation": s} for h, s in pairs]


SCENE_PRESETS = [
    {
        "id": "savanna-sunset",
        "name": "Savanna Sunset",
        "description": "Warm oranges, reds, and golds fading into the night.",
        "type": "drift",
        "transition_speed_ms": 8000,
        "brightness": 60,
        "palette": _palette((30, 0.9), (10, 0.85), (45, 0.7), (340, 0.4), (20, 0.6)),
    },
    {
        "id": "arctic-aurora",
        "name": "Arctic Aurora",
        "description": "Serene teals, cool blues, and mystical purples.",
        "type": "drift",
        "transition_speed_ms": 10000,
        "brightness": 50,
        "palette": _palette((180, 0.8), (200, 0.9), (260, 0.7), (160, 0.8), (240, 0.9)),
    },
    {
        "id": "cozy-fireplace",
        "name": "Cozy Fireplace",
        "description": "Deep ambers and reds simulating a warm fire.",
        "type": "drift",
        "transition_speed_ms": 4000,
        "brightness": 40,
        "palette": _palette((25, 0.9), (15, 0.95), (35, 0.85), (10, 0.9), (30, 0.7)),
    },
    {
        "id": "deep-ocean",
        "name": "Deep Ocean",
        "description": "Profound blues and teals from the depths.",
        "type": "drift",
        "transition_speed_ms": 12000,
        "brightness": 40,
        "palette": _palette((230, 0.9), (210, 0.8), (190, 0.9), (240, 1.0), (200, 0.6)),
    },
    {
        "id": "forest-morning",
        "name": "Forest Morning",
        "description": "Fresh greens and sunlit yellows.",
        "type": "drift",
        "transition_speed_ms": 9000,
        "brightness": 60,
        "palette": _palette((120, 0.7), (90, 0.6), (140, 0.8), (60, 0.4), (100, 0.5)),
    },
    {
        "id": "sukhumvit-nights",
        "name": "Sukhumvit Nights",
        "description": "Neon pinks, electric blues, and busy street lights.",
        "type": "drift",
        "transition_speed_ms": 3000,
        "brightness": 80,
        "palette": _palette((300, 1.0), (240, 1.0), (340, 0.9), (200, 1.0), (280, 0.9)),
    },
    {
        "id": "miami-vice",
        "name": "Miami Vice",
        "description": "Art deco pastels, turquoise water, and pink flamingos.",
        "type": "drift",
        "transition_speed_ms": 6000,
        "brightness": 70,
        "palette": _palette((180, 0.6), (320, 0.6), (190, 0.7), (300, 0.5), (50, 0.3)),
    },
    {
        "id": "la-sunset",
        "name": "L.A. Sunset",
        "description": "Palm silhouettes against a purple and orange gradient.",
        "type": "drift",
        "transition_speed_ms": 9000,
        "brightness": 65,
        "palette": _palette((280, 0.8), (320, 0.7), (30, 0.9), (260, 0.6), (45, 0.8)),
    },
    {
        "id": "ocean-wave",
        "name": "Ocean Wave",
        "description": "Blues and teals rolling across the room.",
        "type": "drift",
        "transition_speed_ms": 6000,
        "brightness": 60,
        "palette": _palette((200, 0.9), (180, 0.8), (220, 1.0), (190, 0.6)),
        "spatial": {"mode": "linear", "scale": 2.0, "speed": 0.25, "angle_degrees": 0},
    },
    {
        "id": "aurora-rings",
        "name": "Aurora Rings",
        "description": "Green and violet rings expanding from the middle of the room.",
        "type": "drift",
        "transition_speed_ms": 8000,
        "brightness": 50,
        "palette": _palette((140, 0.8), (170, 0.7), (270, 0.8), (300, 0.6)),
        "spatial": {"mode": "radial", "scale": 3.0, "speed": 0.2, "angle_degrees": 0},
    },
    {
        "id": "fireflies",
        "name": "Fireflies",
        "description": "Warm yellow glows drifting in and out of phase.",
        "type": "drift",
        "transition_speed_ms": 5000,
        "brightness": 35,
        "palette": _palette((50, 0.9), (40, 0.7), (70, 0.6), (30, 0.8)),
        "spatial": {"mode": "random", "scale": 4.0, "speed": 0.3, "angle_degrees": 0},
    },
    {
        "id": "reading-light",
        "name": "Reading Light",
        "description": "Steady warm whites.",
        "type": "static",
        "transition_speed_ms": 2000,
        "brightness": 85,
        "palette": _palette((40, 0.2), (35, 0.3), (45, 0.15)),
    },
]

OVERRIDABLE_FIELDS = ("transition_speed_ms", "brightness")
