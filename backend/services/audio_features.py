"""Audio feature extraction: frequency bands, beats and song sections.

Works on the two byte-scaled arrays an analyser produces each frame:

  - freq_data: N magnitudes covering 0..sample_rate/2, 0-255
  - time_data: time-domain samples, 0-255 with 128 as silence

Everything here is pure numpy over those arrays, so it runs the same on
frames computed server-side (services.audio_input) and on frames sent by
browser clients.
"""

import logging
import time

import numpy as np

logger = logging.getLogger(__name__)

# -- Analyser defaults -------------------------------------------------------
SAMPLE_RATE = 44100
FFT_SIZE = 2048
MAGNITUDE_SCALE = 255.0

# -- Frequency bands (Hz) ----------------------------------------------------
BASS_RANGE = (20, 200)
MIDS_RANGE = (200, 1000)
TREBLE_RANGE = (1000, 20000)
MIDS_GAIN = 1.2
TREBLE_GAIN = 1.8  # compensates for high-frequency roll-off

# -- Beat detection ----------------------------------------------------------
BEAT_HISTORY_SIZE = 43      # ~1 s of frames
BEAT_THRESHOLD = 1.3        # std-devs above the mean
MIN_BEAT_INTERVAL_MS = 100
ENERGY_VARIANCE_FLOOR = 0.02
BASS_FRACTION = 0.1         # lowest decile of bins

# -- Section detection -------------------------------------------------------
SECTION_HISTORY_SIZE = 50
SECTION_MIN_HISTORY = 20
SECTION_RECENT = 10
SECTION_OLDER = 20
MIN_SECTION_INTERVAL_MS = 5000
SECTION_MIN_CONFIDENCE = 0.5
BUILD_CONFIDENCE = 0.7
ROLLOFF_PERCENT = 0.85

SECTION_TYPES = ("DROP", "BUILD", "BREAKDOWN", "VERSE", "CHORUS")


def now_ms():
    return time.time() * 1000.0


def _as_array(data):
    """Return data as a 1-D float array, or None if it is unusable."""
    if data is None:
        return None
    try:
        arr = np.asarray(data, dtype=np.float64).ravel()
    except (TypeError, ValueError):
        return None
    if arr.size == 0 or not np.all(np.isfinite(arr)):
        return None
    return arr


def _band_mean(freq, bin_width, low_hz, high_hz):
    start = int(low_hz // bin_width)
    end = min(int(high_hz // bin_width), freq.size - 1)
    if end <= start:
        return 0.0
    return float(freq[start:end].mean()) / MAGNITUDE_SCALE


def analyze_bands(freq_data, sample_rate=SAMPLE_RATE):
    """Split a magnitude array into bass/mids/treble energies.

    Args:
        freq_data: Byte-scaled magnitudes covering 0 to the Nyquist frequency.
        sample_rate: Sample rate the spectrum was computed at.

    Returns:
        A frame dict {"bass", "mids", "treble", "dominant_frequency",
        "spectrum"} with band values in [0, 1], or None for unusable input.
    """
    freq = _as_array(freq_data)
    if freq is None:
        return None
    bin_width = (sample_rate / 2.0) / freq.size

    bass = _band_mean(freq, bin_width, *BASS_RANGE)
    mids = _band_mean(freq, bin_width, *MIDS_RANGE) * MIDS_GAIN
    treble = _band_mean(freq, bin_width, *TREBLE_RANGE) * TREBLE_GAIN

    return {
        "bass": min(1.0, bass),
        "mids": min(1.0, mids),
        "treble": min(1.0, treble),
        "dominant_frequency": float(np.argmax(freq)) * bin_width,
        "spectrum": (freq / MAGNITUDE_SCALE).tolist(),
    }


def spectral_features(freq_data, time_data, sample_rate=SAMPLE_RATE):
    """Higher-level descriptors used for section detection.

    Returns:
        {"energy", "rms", "spectral_centroid", "spectral_flatness",
        "spectral_rolloff"}, or None for unusable input.  energy is the mean
        normalized magnitude (0-1); centroid and rolloff are in Hz.
    """
    freq = _as_array(freq_data)
    samples = _as_array(time_data)
    if freq is None or samples is None:
        return None

    mags = freq / MAGNITUDE_SCALE
    bin_width = (sample_rate / 2.0) / mags.size
    freqs = np.arange(mags.size) * bin_width
    total = mags.sum()

    if total > 0:
        centroid = float((freqs * mags).sum() / total)
        cumulative = np.cumsum(mags)
        rolloff = float(freqs[np.searchsorted(cumulative, ROLLOFF_PERCENT * total)])
        positive = mags[mags > 0]
        geometric = np.exp(np.log(positive).mean()) if positive.size == mags.size else 0.0
        flatness = float(geometric / mags.mean())
    else:
        centroid = rolloff = flatness = 0.0

    normalized = (samples - 128.0) / 128.0
    return {
        "energy": float(mags.mean()),
        "rms": float(np.sqrt(np.mean(normalized ** 2))),
        "spectral_centroid": centroid,
        "spectral_flatness": flatness,
        "spectral_rolloff": rolloff,
    }


class BeatDetector:
    """Adaptive-threshold onset detector over low-frequency energy.

    A beat fires when the current energy is above mean + threshold * std of
    the rolling window, the window's variance is above a floor (so silence
    and steady tones never trigger) and the refractory interval has passed.
    """

    def __init__(self, history_size=BEAT_HISTORY_SIZE, threshold=BEAT_THRESHOLD,
                 min_interval_ms=MIN_BEAT_INTERVAL_MS, variance_floor=ENERGY_VARIANCE_FLOOR):
        self.history_size = history_size
        self.threshold = threshold
        self.min_interval_ms = min_interval_ms
        self.variance_floor = variance_floor
        self._history = []
        self._last_beat_ms = None

    def reset(self):
        self._history = []
        self._last_beat_ms = None

    @staticmethod
    def energy(freq_data, time_data):
        """Mean squared bass magnitude scaled by the time-domain RMS."""
        freq = _as_array(freq_data)
        samples = _as_array(time_data)
        if freq is None or samples is None:
            return None
        bass = freq[:max(1, int(freq.size * BASS_FRACTION))]
        normalized = (samples - 128.0) / 128.0
        rms = np.sqrt(np.mean(normalized ** 2))
        return float(np.mean(bass ** 2) * rms)

    def detect(self, freq_data, time_data, timestamp=None):
        energy = self.energy(freq_data, time_data)
        if energy is None:
            return None
        return self.process_energy(energy, timestamp)

    def process_energy(self, energy, timestamp=None):
        """Feed one energy sample; returns a beat dict or None."""
        timestamp = now_ms() if timestamp is None else timestamp
        self._history.append(energy)
        if len(self._history) > self.history_size:
            self._history.pop(0)
        if len(self._history) < self.history_size:
            return None

        history = np.asarray(self._history)
        mean = float(history.mean())
        variance = float(history.var())
        dynamic_threshold = mean + self.threshold * np.sqrt(variance)

        if energy <= dynamic_threshold or variance <= self.variance_floor:
            return None
        if self._last_beat_ms is not None and timestamp - self._last_beat_ms <= self.min_interval_ms:
            return None

        self._last_beat_ms = timestamp
        intensity = min(1.0, max(0.0, (energy - mean) / mean)) if mean > 0 else 1.0
        confidence = 0.0
        if dynamic_threshold > 0:
            confidence = min(1.0, max(0.0, (energy - dynamic_threshold) / dynamic_threshold))
        return {"timestamp": timestamp, "intensity": intensity, "confidence": float(confidence)}


class SectionDetector:
    """Detects structural changes by comparing recent and older feature windows."""

    def __init__(self, history_size=SECTION_HISTORY_SIZE, min_interval_ms=MIN_SECTION_INTERVAL_MS):
        self.history_size = history_size
        self.min_interval_ms = min_interval_ms
        self._history = []
        self._last_section_ms = None

    def reset(self):
        self._history = []
        self._last_section_ms = None

    def detect(self, features, timestamp=None):
        """Feed one spectral_features() dict; returns a section dict or None."""
        if not features:
            return None
        timestamp = now_ms() if timestamp is None else timestamp
        self._history.append(features)
        if len(self._history) > self.history_size:
            self._history.pop(0)
        if len(self._history) < SECTION_MIN_HISTORY:
            return None
        if self._last_section_ms is not None and timestamp - self._last_section_ms < self.min_interval_ms:
            return None

        recent = self._history[-SECTION_RECENT:]
        older = self._history[-(SECTION_RECENT + SECTION_OLDER):-SECTION_RECENT]
        recent_energy = np.mean([f["energy"] for f in recent])
        older_energy = np.mean([f["energy"] for f in older])
        if older_energy <= 0:
            return None
        change = (recent_energy - older_energy) / older_energy

        section_type = None
        confidence = 0.0
        if change > 0.5 and recent_energy > 0.3:
            section_type = "DROP" if recent_energy > 0.6 else "CHORUS"
            confidence = min(1.0, change)
        elif change < -0.3:
            section_type = "BREAKDOWN" if recent_energy < 0.2 else "VERSE"
            confidence = min(1.0, abs(change))
        elif self._is_build(recent, older):
            section_type = "BUILD"
            confidence = BUILD_CONFIDENCE

        if section_type is None or confidence <= SECTION_MIN_CONFIDENCE:
            return None
        self._last_section_ms = timestamp
        return {"type": section_type, "timestamp": timestamp, "confidence": float(confidence)}

    @staticmethod
    def _is_build(recent, older):
        recent_centroid = np.mean([f.get("spectral_centroid", 0) for f in recent])
        older_centroid = np.mean([f.get("spectral_centroid", 0) for f in older])
        rising = sum(1 for a, b in zip(recent, recent[1:]) if b["energy"] > a["energy"])
        return recent_centroid > older_centroid * 1.1 and rising > len(recent) * 0.6


class FeatureExtractor:
    """Runs banding, beat and section detection over one analyser frame.

    process() never raises: a bad frame is logged and yields no output.
    """

    def __init__(self, sample_rate=SAMPLE_RATE, beat_detector=None, section_detector=None):
        self.sample_rate = sample_rate
        self.beats = beat_detector or BeatDetector()
        self.sections = section_detector or SectionDetector()

    def reset(self):
        self.beats.reset()
        self.sections.reset()

    def process(self, freq_data, time_data, timestamp=None):
        """Analyse one frame.

        Returns:
            {"frame": dict | None, "beat": dict | None, "section": dict | None}
        """
        result = {"frame": None, "beat": None, "section": None}
        timestamp = now_ms() if timestamp is None else timestamp
        try:
            result["frame"] = analyze_bands(freq_data, self.sample_rate)
            if result["frame"] is None:
                return result
            result["beat"] = self.beats.detect(freq_data, time_data, timestamp)
            features = spectral_features(freq_data, time_data, self.sample_rate)
            result["section"] = self.sections.detect(features, timestamp)
        except Exception:
            logger.exception("Feature extraction failed; dropping frame")
        return result
