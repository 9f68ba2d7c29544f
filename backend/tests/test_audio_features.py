import numpy as np
import pytest

from services.audio_features import (
    BeatDetector,
    FeatureExtractor,
    SectionDetector,
    analyze_bands,
    spectral_features,
)

N_BINS = 1024
BIN_WIDTH = 22050 / N_BINS


def _silence():
    return np.full(2048, 128, dtype=np.uint8)


def test_bass_only_spectrum():
    freq = np.zeros(N_BINS)
    freq[:9] = 255  # 0-194 Hz
    frame = analyze_bands(freq)
    assert frame["bass"] == pytest.approx(1.0)
    assert frame["mids"] == 0
    assert frame["treble"] == 0
    assert len(frame["spectrum"]) == N_BINS


def test_band_gains_and_clamp():
    freq = np.zeros(N_BINS)
    freq[9:46] = 100    # mids
    freq[46:928] = 200  # treble
    frame = analyze_bands(freq)
    assert frame["mids"] == pytest.approx(100 / 255 * 1.2)
    assert frame["treble"] == 1.0


def test_dominant_frequency():
    freq = np.full(N_BINS, 10.0)
    freq[100] = 250
    assert analyze_bands(freq)["dominant_frequency"] == pytest.approx(100 * BIN_WIDTH)


@pytest.mark.parametrize("bad", [None, [], "noise", [1, float("nan")]])
def test_unusable_input_gives_nothing(bad):
    assert analyze_bands(bad) is None
    assert BeatDetector().detect(bad, _silence()) is None


def test_flat_spectrum_is_flat():
    features = spectral_features(np.full(N_BINS, 128), _silence())
    assert features["spectral_flatness"] == pytest.approx(1.0)
    assert features["rms"] == 0
    assert features["spectral_centroid"] == pytest.approx((N_BINS - 1) / 2 * BIN_WIDTH)


def _primed_detector():
    detector = BeatDetector()
    t = 0
    for i in range(43):
        assert detector.process_energy(0.8 if i % 2 else 1.2, timestamp=t) is None
        t += 23
    return detector, t


def test_beat_fires_on_spike():
    detector, t = _primed_detector()
    beat = detector.process_energy(10.0, timestamp=t)
    assert beat is not None
    assert beat["timestamp"] == t
    assert 0 < beat["intensity"] <= 1
    assert 0 <= beat["confidence"] <= 1


def test_second_spike_inside_refractory_interval_is_ignored():
    detector, t = _primed_detector()
    assert detector.process_energy(10.0, timestamp=t) is not None
    assert detector.process_energy(10.0, timestamp=t + 50) is None
    # Same spike once the interval has passed is a beat again.
    assert detector.process_energy(10.0, timestamp=t + 200) is not None


def test_silence_never_beats():
    detector = BeatDetector()
    for i in range(100):
        assert detector.detect(np.zeros(N_BINS), _silence(), timestamp=i * 33) is None


def _feature(energy, centroid=1000.0):
    return {"energy": energy, "spectral_centroid": centroid}


def test_energy_jump_is_chorus_then_cools_down():
    detector = SectionDetector()
    t = 0
    sections = []
    for energy in [0.2] * 20 + [0.7] * 10:
        result = detector.detect(_feature(energy), timestamp=t)
        if result:
            sections.append(result)
        t += 33
    assert [s["type"] for s in sections] == ["CHORUS"]
    assert sections[0]["confidence"] > 0.5


def test_energy_fall_is_detected():
    detector = SectionDetector()
    t = 0
    sections = []
    for energy in [0.5] * 20 + [0.0] * 10:
        result = detector.detect(_feature(energy), timestamp=t)
        if result:
            sections.append(result)
        t += 33
    assert len(sections) == 1
    assert sections[0]["type"] in ("VERSE", "BREAKDOWN")


def test_rising_energy_and_brightness_is_build():
    detector = SectionDetector()
    history = [_feature(0.4, 1000)] * 20 + [_feature(0.4 + 0.001 * (i + 1), 2000) for i in range(10)]
    sections = [s for s in (detector.detect(f, timestamp=i * 33) for i, f in enumerate(history)) if s]
    assert [s["type"] for s in sections] == ["BUILD"]
    assert sections[0]["confidence"] == 0.7


def test_extractor_survives_garbage():
    extractor = FeatureExtractor()
    assert extractor.process(None, None) == {"frame": None, "beat": None, "section": None}
    assert extractor.process("junk", [1, 2]) == {"frame": None, "beat": None, "section": None}


def test_extractor_produces_frames():
    extractor = FeatureExtractor()
    result = extractor.process(np.full(N_BINS, 60), _silence(), timestamp=0)
    assert result["frame"]["bass"] == pytest.approx(60 / 255)
    assert result["beat"] is None
