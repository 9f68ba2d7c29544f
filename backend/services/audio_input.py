"""Server-side audio capture and the 30 Hz analysis loop.

Reads raw PCM audio (16-bit signed LE stereo, 44.1 kHz) from a named pipe
written by an external capture process, turns the most recent block into
analyser arrays and feeds them through the feature extractor to the sync
engine.  The loop runs on its own thread, independent of any UI.

Usage:
    source = PipeAudioSource()
    loop = AnalysisLoop(source, sync_engine, broadcaster)
    source.start()
    loop.start()
"""

import logging
import os
import threading
import time

import numpy as np

import config
from services.audio_features import FFT_SIZE, SAMPLE_RATE, FeatureExtractor

logger = logging.getLogger(__name__)

# -- Audio constants -------------------------------------------------------
CHANNELS = 2
BYTES_PER_SAMPLE = 2  # 16-bit signed LE
CHUNK_FRAMES = 1024
CHUNK_BYTES = CHUNK_FRAMES * CHANNELS * BYTES_PER_SAMPLE

# -- Analyser ---------------------------------------------------------------
SMOOTHING_TIME_CONSTANT = 0.8
MIN_DECIBELS = -90.0
MAX_DECIBELS = -10.0

# -- Loop --------------------------------------------------------------------
LOOP_PERIOD = 1.0 / 30
FREQUENCY_BROADCAST_INTERVAL = 0.1  # seconds between FREQUENCY_UPDATE messages


class PipeAudioSource:
    """Keeps the capture pipe drained and holds the latest mono samples.

    The reader thread reconnects whenever the writer closes the pipe, so a
    restarted capture process is picked up automatically.
    """

    def __init__(self, pipe_path=config.AUDIO_PIPE_PATH, buffer_size=FFT_SIZE):
        self.pipe_path = pipe_path
        self.buffer_size = buffer_size
        self._buffer = np.zeros(buffer_size, dtype=np.float64)
        self._filled = 0
        self._lock = threading.Lock()
        self._connected = False
        self._stop = threading.Event()
        self._thread = None

    @property
    def connected(self):
        return self._connected

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._reader, daemon=True, name="audio-pipe")
        self._thread.start()

    def stop(self):
        self._stop.set()

    def feed(self, raw):
        """Append raw interleaved PCM bytes to the sample buffer."""
        usable = len(raw) - len(raw) % (CHANNELS * BYTES_PER_SAMPLE)
        if usable <= 0:
            return
        samples = np.frombuffer(raw[:usable], dtype="<i2").reshape(-1, CHANNELS)
        mono = samples.mean(axis=1) / 32768.0
        with self._lock:
            if mono.size >= self.buffer_size:
                self._buffer = mono[-self.buffer_size:].astype(np.float64)
            else:
                self._buffer = np.concatenate((self._buffer[mono.size:], mono))
            self._filled = min(self.buffer_size, self._filled + mono.size)

    def latest(self):
        """Most recent buffer_size mono samples in [-1, 1], or None until filled."""
        with self._lock:
            if self._filled < self.buffer_size:
                return None
            return self._buffer.copy()

    def _read_pipe(self, fd):
        """Read from an open pipe fd until EOF.  Raises OSError on pipe errors."""
        while not self._stop.is_set():
            raw = os.read(fd, CHUNK_BYTES)
            if not raw:
                return  # EOF, writer closed
            self.feed(raw)

    def _reader(self):
        while not self._stop.is_set():
            if not os.path.exists(self.pipe_path):
                time.sleep(0.5)
                continue

            fd = None
            try:
                fd = os.open(self.pipe_path, os.O_RDONLY)
                self._connected = True
                logger.info("Audio pipe connected: %s", self.pipe_path)
                self._read_pipe(fd)
                logger.info("Audio pipe closed by writer")
            except OSError as exc:
                logger.debug("Audio pipe reader: %s, retrying...", exc)
            finally:
                self._connected = False
                if fd is not None:
                    try:
                        os.close(fd)
                    except OSError:
                        pass
            time.sleep(1.0)


class SpectrumAnalyser:
    """Turns time-domain samples into byte-scaled analyser arrays.

    Magnitudes use a Blackman window, per-bin exponential smoothing across
    frames and a decibel range mapped onto 0-255.  Time-domain samples are
    mapped so 128 is silence.
    """

    def __init__(self, fft_size=FFT_SIZE, smoothing=SMOOTHING_TIME_CONSTANT,
                 min_db=MIN_DECIBELS, max_db=MAX_DECIBELS):
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = np.blackman(fft_size)
        self._previous = np.zeros(fft_size // 2)

    def frequency_bytes(self, samples):
        spectrum = np.abs(np.fft.rfft(samples[-self.fft_size:] * self._window))[: self.fft_size // 2]
        magnitude = spectrum / self.fft_size
        self._previous = self.smoothing * self._previous + (1.0 - self.smoothing) * magnitude
        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(self._previous)
        scaled = 255.0 * (decibels - self.min_db) / (self.max_db - self.min_db)
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def time_bytes(self, samples):
        return np.clip(128.0 * (1.0 + samples[-self.fft_size:]), 0, 255).astype(np.uint8)


class AnalysisLoop:
    """Analyses the latest audio block 30 times a second.

    Frames, beats and sections go to the sync engine; the same results are
    pushed to connected observers (frequency updates throttled).
    """

    def __init__(self, source, sync_engine, broadcaster=None, extractor=None,
                 analyser=None, sample_rate=SAMPLE_RATE):
        self.source = source
        self.sync_engine = sync_engine
        self.broadcaster = broadcaster
        self.extractor = extractor or FeatureExtractor(sample_rate=sample_rate)
        self.analyser = analyser or SpectrumAnalyser()
        self._running = False
        self._thread = None
        self._last_frequency_broadcast = 0.0

    @property
    def is_running(self):
        return self._running

    def start(self):
        if self._running:
            return
        self._running = True
        self.extractor.reset()
        self._thread = threading.Thread(target=self._run, daemon=True, name="audio-analysis")
        self._thread.start()
        logger.info("Audio analysis loop started")

    def stop(self):
        self._running = False
        logger.info("Audio analysis loop stopped")

    def _run(self):
        while self._running:
            started = time.monotonic()
            try:
                self.tick()
            except Exception:
                logger.exception("Analysis frame failed")
            elapsed = time.monotonic() - started
            time.sleep(max(0.0, LOOP_PERIOD - elapsed))

    def tick(self):
        """Analyse one block; returns the extractor result or None without audio."""
        samples = self.source.latest()
        if samples is None:
            return None
        freq_data = self.analyser.frequency_bytes(samples)
        time_data = self.analyser.time_bytes(samples)
        result = self.extractor.process(freq_data, time_data)
        self.dispatch(result)
        return result

    def dispatch(self, result):
        frame, beat, section = result["frame"], result["beat"], result["section"]
        if frame is not None:
            self.sync_engine.handle_frequency(frame)
        if beat is not None:
            self.sync_engine.handle_beat(beat)
        if section is not None:
            self.sync_engine.handle_section(section)

        if self.broadcaster is None:
            return
        if beat is not None:
            self.broadcaster.broadcast("BEAT_DETECTED", beat)
        if section is not None:
            self.broadcaster.broadcast("SONG_SECTION", section)
        now = time.monotonic()
        if frame is not None and now - self._last_frequency_broadcast >= FREQUENCY_BROADCAST_INTERVAL:
            self._last_frequency_broadcast = now
            summary = {k: frame[k] for k in ("bass", "mids", "treble", "dominant_frequency")}
            self.broadcaster.broadcast("FREQUENCY_UPDATE", summary)
