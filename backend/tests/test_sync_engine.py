import threading

import pytest

from conftest import FakeClock, RecordingLights, make_light
from services import events as topics
from services.sync_engine import (
    ColorSmoother,
    SyncEngine,
    VIBRANT_COLORS,
    distribute_pattern,
    frequency_color,
    pattern_for,
)
from services.validation import ValidationError


def _engine(devices=None, now=0.0):
    clock = FakeClock(now)
    lights = RecordingLights(devices)
    engine = SyncEngine(lights, clock=clock, sleep=lambda seconds: None)
    return engine, lights, clock


def _frame(bass=0.5, mids=0.3, treble=0.2):
    return {"bass": bass, "mids": mids, "treble": treble, "dominant_frequency": 100.0}


# ----------------------------------------------------------------------
# Beats
# ----------------------------------------------------------------------

def test_weak_beats_are_ignored():
    engine, lights, _ = _engine()
    assert engine.handle_beat({"intensity": 1.0, "confidence": 0.5}) is False
    assert lights.commands == []


def test_beat_pulse_brightness_scales_with_intensity():
    engine, lights, _ = _engine()
    assert engine.handle_beat({"intensity": 1.0, "confidence": 0.9}) is True
    command = lights.commands[0]
    assert command["type"] == "PULSE"
    assert command["brightness"] == pytest.approx(30 + 70 * 0.8)
    assert command["transition_ms"] == 50
    assert command["return_delay_ms"] == 150


def test_beats_are_limited_to_one_per_interval():
    engine, lights, clock = _engine()
    for t in (0, 100, 500, 799):
        clock.now = t
        engine.handle_beat({"intensity": 0.5, "confidence": 0.9})
    assert len(lights.commands) == 1
    clock.now = 800
    engine.handle_beat({"intensity": 0.5, "confidence": 0.9})
    assert len(lights.commands) == 2


def test_quiet_beat_still_pulses_at_base_brightness():
    engine, lights, _ = _engine()
    engine.handle_beat({"intensity": 0.0, "confidence": 1.0})
    assert lights.commands[0]["brightness"] == 30


# ----------------------------------------------------------------------
# Frequency frames
# ----------------------------------------------------------------------

def test_frequency_color_index():
    # floor(6000/3000) + floor(0.1 * 50) = 2 + 5
    assert frequency_color(0.1, 0, 0, 6000) == VIBRANT_COLORS[7]
    assert frequency_color(0, 0, 0, 0) == VIBRANT_COLORS[0]


def test_pattern_rotates_every_fifteen_seconds():
    assert [pattern_for(t) for t in (0, 15000, 30000, 45000, 60000)] == [
        "alternating", "trio", "wave", "quadrant", "alternating",
    ]


def test_frames_between_updates_only_feed_the_smoother():
    devices = [make_light("a"), make_light("b")]
    engine, lights, clock = _engine(devices)
    assert engine.handle_frequency(_frame()) is not None
    for t in (500, 1500, 2999):
        clock.now = t
        assert engine.handle_frequency(_frame()) is None
    assert len(lights.batches) == 1
    assert len(engine._smoother.history) == 4

    clock.now = 3000
    assert engine.handle_frequency(_frame()) is not None
    assert len(lights.batches) == 2


def test_only_lit_color_lamps_get_patterns():
    devices = [
        make_light("a"),
        make_light("off", on=False),
        make_light("dimmer", color=False),
        dict(make_light("skip"), participates=False),
    ]
    engine, lights, _ = _engine(devices)
    updates = engine.handle_frequency(_frame())
    assert [u["device_id"] for u in updates] == ["a"]
    assert updates[0]["transition_ms"] == 200


def test_alternating_pattern():
    primary = {"hue": 0, "saturation": 0.9}
    updates = distribute_pattern(["a", "b", "c"], 1.0, 0.0, 0.0, 0, primary)
    assert [u["color"]["hue"] for u in updates] == [0, 240, 0]
    assert [u["brightness"] for u in updates] == [85, 40, 85]


def test_quadrant_pattern_fourth_group_averages():
    primary = {"hue": 0, "saturation": 0.9}
    updates = distribute_pattern(["a", "b", "c", "d", "e"], 1.0, 0.0, 0.5, 45000, primary)
    assert [u["color"]["hue"] for u in updates] == [0, 120, 240, 60, 0]
    assert updates[3]["brightness"] == round((85 + 40) / 2)


def test_wave_pattern_brightness_stays_between_bands():
    primary = {"hue": 0, "saturation": 0.9}
    updates = distribute_pattern(["a", "b", "c", "d"], 1.0, 0.0, 0.0, 30000, primary)
    assert all(40 <= u["brightness"] <= 85 for u in updates)
    assert {u["color"]["hue"] for u in updates} <= {0, 60}


def test_smoother_returns_first_color_untouched():
    smoother = ColorSmoother()
    assert smoother.add({"hue": 123, "saturation": 0.5}) == {"hue": 123, "saturation": 0.5}


def test_smoother_cosine_only_mean_folds_hue_to_axis():
    # Averaging uses only the cosine component, so any blend lands on 0 or 180.
    smoother = ColorSmoother()
    smoother.add({"hue": 60, "saturation": 0.4})
    assert smoother.add({"hue": 60, "saturation": 0.4})["hue"] == 0
    smoother.reset()
    smoother.add({"hue": 240, "saturation": 1.0})
    assert smoother.add({"hue": 240, "saturation": 1.0})["hue"] == 180


def test_smoother_weights_recent_saturation():
    smoother = ColorSmoother()
    smoother.add({"hue": 0, "saturation": 0.0})
    result = smoother.add({"hue": 0, "saturation": 1.0})
    # weights 1/2 and 2/2
    assert result["saturation"] == pytest.approx(2 / 3)


def test_smoother_keeps_five_colors():
    smoother = ColorSmoother()
    for i in range(8):
        smoother.add({"hue": i, "saturation": 1})
    assert len(smoother.history) == 5


# ----------------------------------------------------------------------
# Sections
# ----------------------------------------------------------------------

def test_section_scripts():
    drop = SyncEngine.section_steps("DROP")
    assert len(drop) == 12
    assert [s[0]["brightness"] for s in drop[:2]] == [100, 20]

    build = SyncEngine.section_steps("BUILD")
    assert len(build) == 21
    assert build[0][0] == {"brightness": 30, "color": {"hue": 200, "saturation": 0.4}, "transition_ms": 150}
    assert build[-1][0]["brightness"] == 100
    assert build[-1][0]["color"]["hue"] == 0  # 360 wraps to red

    assert SyncEngine.section_steps("VERSE") == []


def test_section_effect_runs_in_background():
    engine, lights, _ = _engine()
    thread = engine.handle_section({"type": "BREAKDOWN", "confidence": 0.8})
    thread.join(timeout=2)
    assert lights.updates == [{"brightness": 15, "color": {"hue": 220, "saturation": 0.3}, "transition_ms": 1000}]


def test_verse_changes_nothing():
    engine, lights, _ = _engine()
    assert engine.handle_section({"type": "VERSE", "confidence": 0.9}) is None
    assert lights.updates == []


def test_drop_effect_sends_every_step():
    engine, lights, _ = _engine()
    engine.handle_section({"type": "DROP", "confidence": 0.9}).join(timeout=2)
    assert len(lights.updates) == 12
    assert [u["color"]["hue"] for u in lights.updates][:3] == [0, 30, 60]


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------

def test_settings_update_publishes_full_settings():
    engine, lights, _ = _engine()
    seen = []
    lights.events.subscribe(topics.SETTINGS_UPDATE, seen.append)
    settings = engine.update_settings({"color_mode": "random"})
    assert settings["color_mode"] == "random"
    assert settings["sensitivity"] == 0.7
    assert seen == [settings]


def test_invalid_settings_leave_state_alone():
    engine, _, _ = _engine()
    with pytest.raises(ValidationError) as exc:
        engine.update_settings({"effect_intensity": 3})
    assert exc.value.field == "effect_intensity"
    assert engine.get_settings()["effect_intensity"] == 0.8


def test_mood_mode_uses_energy_bands():
    engine, _, _ = _engine()
    engine.update_settings({"color_mode": "mood"})
    low = engine.map_color(0.1, 0.05, 0.05, 0)
    assert 240 <= low["hue"] <= 300 and low["saturation"] == 0.6
    high = engine.map_color(0.5, 0.3, 0.3, 0)
    assert 0 <= high["hue"] <= 60 and high["saturation"] == 0.8


def test_frame_handling_leaves_settings_readable():
    engine, lights, _ = _engine([make_light("a")])
    worker = threading.Thread(target=engine.handle_frequency, args=(_frame(),), daemon=True)
    worker.start()
    worker.join(timeout=2)
    assert not worker.is_alive()
    assert len(lights.batches) == 1

    reader = threading.Thread(target=engine.get_settings, daemon=True)
    reader.start()
    reader.join(timeout=2)
    assert not reader.is_alive()
