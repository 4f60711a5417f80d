"""
Pytest configuration and fixtures for Speech Analyzer tests.
"""

import os
import queue
import sys
import tempfile
import threading
import time

import numpy as np
import pytest
import soundfile as sf

# Add src to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from speech_analyzer.audio_buffer import AudioBuffer, AudioFormat
from speech_analyzer.audio_capture import CaptureState
from speech_analyzer.transcription_engine import EngineOptions, RecognitionEngine


class ScriptedEngine(RecognitionEngine):
    """Recognition engine that answers with scripted text instead of a model."""

    def __init__(
        self,
        transcripts=None,
        supported=("en-US", "en-GB", "de-DE"),
        installed=("en-US",),
        available=True,
        fail_install=False,
        fail_load=False,
        options=None,
    ):
        super().__init__(options or EngineOptions(report_volatile=False))
        self.transcripts = list(transcripts or [])
        self.supported = list(supported)
        self.installed = list(installed)
        self.available = available
        self.fail_install = fail_install
        self.fail_load = fail_load
        self.install_calls = []
        self.loaded_locale = None
        self.recognized = []

    def is_available(self):
        return self.available

    def supported_locales(self):
        return list(self.supported)

    def installed_locales(self):
        return list(self.installed)

    def _install_assets(self, locale):
        self.install_calls.append(locale)
        if self.fail_install:
            raise RuntimeError("download failed")
        self.installed.append(locale)

    def _load(self, locale):
        if self.fail_load:
            raise RuntimeError("model missing")
        self.loaded_locale = locale

    def _recognize(self, audio):
        self.recognized.append(audio.size)
        if self.transcripts:
            item = self.transcripts.pop(0)
            if isinstance(item, Exception):
                raise item
            return [(item, 0.9)]
        return [(f"{audio.size} samples", None)]


class FakeCapture:
    """In-memory stand-in for AudioCapture."""

    def __init__(self, fail_start=None):
        self.state = CaptureState.STOPPED
        self.events = queue.Queue()
        self.fail_start = fail_start
        self.calls = []

    def start(self):
        self.calls.append("start")
        if self.fail_start is not None:
            raise self.fail_start
        self.state = CaptureState.STARTED

    def pause(self):
        self.calls.append("pause")
        self.state = CaptureState.PAUSED

    def resume(self):
        self.calls.append("resume")
        self.state = CaptureState.STARTED

    def stop(self):
        self.calls.append("stop")
        self.state = CaptureState.STOPPED

    def emit(self, buffer, timestamp=None):
        self.events.put((buffer, time.monotonic() if timestamp is None else timestamp))

    def iter_events(self, stop_event, poll_interval=0.05):
        while not stop_event.is_set():
            try:
                yield self.events.get(timeout=poll_interval)
            except queue.Empty:
                continue


def wait_until(predicate, timeout=3.0, interval=0.01):
    """Poll until predicate() is truthy; returns its final value."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    return predicate()


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def sample_audio_data():
    """Generate sample audio data for testing."""
    sample_rate = 16000
    duration = 1.0  # 1 second
    frequency = 440  # A4 note

    t = np.linspace(0, duration, int(sample_rate * duration), False)
    audio_data = np.sin(2 * np.pi * frequency * t).astype(np.float32)

    return audio_data, sample_rate


@pytest.fixture
def speech_format():
    return AudioFormat(16000.0, 1)


@pytest.fixture
def make_buffer():
    """Factory for float32 buffers of a given length, rate and channel count."""
    def _make(frames=1600, sample_rate=16000, channels=1, value=0.1):
        samples = np.full((frames, channels), value, dtype=np.float32)
        return AudioBuffer.from_array(samples, sample_rate)
    return _make


@pytest.fixture
def wav_file(temp_dir, sample_audio_data):
    """Two seconds of 440 Hz tone at 16 kHz, written as a WAV file."""
    audio_data, sample_rate = sample_audio_data
    path = os.path.join(temp_dir, "tone.wav")
    sf.write(path, np.concatenate([audio_data, audio_data]) * 0.5, sample_rate)
    return path


@pytest.fixture
def engine():
    engine = ScriptedEngine()
    yield engine
    engine.cancel_and_finish_now()


@pytest.fixture
def prepared_engine(engine):
    engine.prepare("en-US")
    return engine


@pytest.fixture
def wait_for():
    return wait_until
