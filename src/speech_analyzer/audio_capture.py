"""
Live microphone capture.

The sounddevice callback runs on PortAudio's real-time thread: it only copies
the block into an AudioBuffer and hands it to a FIFO queue together with a
monotonic timestamp. Consumers read the queue from their own thread.
"""

import logging
import math
import queue
import threading
import time
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

try:
    import sounddevice as sd
except (ImportError, OSError) as e:  # PortAudio library missing
    sd = None
    _sounddevice_error = e
else:
    _sounddevice_error = None

from .audio_buffer import AudioBuffer, AudioFormat, SampleFormat
from .errors import (
    DeviceNotFound,
    DeviceStartError,
    InputNotEnabled,
    PermissionDenied,
    UnknownPermission,
)

logger = logging.getLogger(__name__)

CaptureEvent = Tuple[AudioBuffer, float]


class CaptureState(Enum):
    STOPPED = "stopped"
    STARTED = "started"
    PAUSED = "paused"


class PermissionStatus(Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"
    UNKNOWN = "unknown"


def _require_sounddevice():
    if sd is None:
        raise DeviceNotFound(f"PortAudio is not available: {_sounddevice_error}")
    return sd


class InputDevice:
    """An audio input device as seen by PortAudio."""

    def __init__(self, device: Optional[int] = None):
        self.device = device
        self.info: Optional[Dict] = None

    def select(self) -> Dict:
        """Resolve the configured (or default) input device."""
        sounddevice = _require_sounddevice()
        try:
            if self.device is None:
                info = sounddevice.query_devices(kind='input')
            else:
                info = sounddevice.query_devices(self.device)
        except Exception as e:
            raise DeviceNotFound(f"No suitable input device: {e}") from e

        if not info or info.get('max_input_channels', 0) <= 0:
            raise DeviceNotFound(f"Device {self.device} has no input channels")

        self.info = dict(info)
        if self.device is None:
            self.device = self.info.get('index')
        logger.info(f"Selected input device: {self.info.get('name')} (ID: {self.device})")
        return self.info

    def hardware_format(self) -> AudioFormat:
        info = self.info if self.info is not None else self.select()
        return AudioFormat(
            sample_rate=float(info.get('default_samplerate') or 0.0),
            channels=int(info.get('max_input_channels') or 0),
            sample_format=SampleFormat.FLOAT32,
        )

    def is_input_enabled(self) -> bool:
        """True iff the hardware reports a nonzero sample rate and channel count."""
        audio_format = self.hardware_format()
        if math.isnan(audio_format.sample_rate) or audio_format.sample_rate == 0:
            return False
        return audio_format.channels > 0


class MicrophonePermission:
    """
    Recording permission for an input device.

    PortAudio has no permission prompt; a request opens the device settings
    check and a failure is treated as a denial.
    """

    def __init__(self, status: PermissionStatus = PermissionStatus.UNDETERMINED):
        self._status = status

    def status(self) -> PermissionStatus:
        return self._status

    def request(self, device: Optional[int] = None) -> PermissionStatus:
        sounddevice = _require_sounddevice()
        try:
            sounddevice.check_input_settings(device=device)
            self._status = PermissionStatus.GRANTED
        except Exception as e:
            logger.error(f"Input device permission check failed: {e}")
            self._status = PermissionStatus.DENIED
        return self._status


class AudioCapture:
    """Single input stream with pause/resume and a buffer handoff queue."""

    def __init__(
        self,
        device: Optional[int] = None,
        block_size: int = 1024,
        permission: Optional[MicrophonePermission] = None,
    ):
        self.input_device = InputDevice(device)
        self.block_size = block_size
        self.permission = permission or MicrophonePermission()

        self.stream = None
        self.state = CaptureState.STOPPED
        self.format: Optional[AudioFormat] = None
        self.events: "queue.Queue[CaptureEvent]" = queue.Queue()
        self.lock = threading.Lock()

        # Error tracking
        self.callback_errors = 0
        self.max_errors = 5

    @staticmethod
    def list_input_devices() -> List[Dict]:
        """List available audio input devices."""
        try:
            devices = _require_sounddevice().query_devices()
        except Exception as e:
            logger.error(f"Failed to list audio devices: {e}")
            return []

        input_devices = []
        for i, device in enumerate(devices):
            if device['max_input_channels'] > 0:
                input_devices.append({
                    'id': i,
                    'name': device['name'],
                    'channels': device['max_input_channels'],
                    'sample_rate': device['default_samplerate'],
                })
        return input_devices

    @property
    def is_running(self) -> bool:
        return self.state is CaptureState.STARTED

    def _check_permission(self):
        status = self.permission.status()
        if status is PermissionStatus.UNDETERMINED:
            status = self.permission.request(self.input_device.device)
            if status is not PermissionStatus.GRANTED:
                raise PermissionDenied()
            return
        if status is PermissionStatus.DENIED:
            raise PermissionDenied()
        if status is not PermissionStatus.GRANTED:
            raise UnknownPermission()

    def _tap_callback(self, indata, frames, time_info, status):
        """Input stream callback; copies the block and queues it."""
        try:
            if status:
                logger.warning(f"Input audio status: {status}")

            buffer = AudioBuffer(indata, self.format)
            self.events.put_nowait((buffer, time.monotonic()))
            self.callback_errors = 0

        except Exception as e:
            self.callback_errors += 1
            logger.error(f"Capture callback error ({self.callback_errors}/{self.max_errors}): {e}")
            if self.callback_errors >= self.max_errors:
                logger.error("Too many capture errors, aborting input stream")
                raise _require_sounddevice().CallbackAbort from e

    def start(self):
        """Start capturing from the input device."""
        with self.lock:
            if self.state is not CaptureState.STOPPED:
                logger.warning("Audio capture already running")
                return

            logger.info("Starting audio capture...")
            self._check_permission()
            self.input_device.select()
            if not self.input_device.is_input_enabled():
                raise InputNotEnabled()

            self.format = self.input_device.hardware_format()
            self.callback_errors = 0

            sounddevice = _require_sounddevice()
            try:
                self.stream = sounddevice.InputStream(
                    device=self.input_device.device,
                    channels=self.format.channels,
                    samplerate=self.format.sample_rate,
                    blocksize=self.block_size,
                    dtype=np.float32,
                    callback=self._tap_callback,
                )
                self.stream.start()
            except Exception as e:
                logger.error(f"Failed to start audio capture: {e}")
                self._close_stream()
                raise DeviceStartError(f"Failed to start audio capture: {e}") from e

            self.state = CaptureState.STARTED
            logger.info(f"Audio capture started ({self.format})")

    def pause(self):
        with self.lock:
            if self.state is not CaptureState.STARTED:
                return
            try:
                self.stream.stop()
            except Exception as e:
                logger.error(f"Error pausing input stream: {e}")
            self.state = CaptureState.PAUSED
            logger.info("Audio capture paused")

    def resume(self):
        with self.lock:
            if self.state is not CaptureState.PAUSED:
                return
            try:
                self.stream.start()
            except Exception as e:
                logger.error(f"Failed to resume audio capture: {e}")
                raise DeviceStartError(f"Failed to resume audio capture: {e}") from e
            self.state = CaptureState.STARTED
            logger.info("Audio capture resumed")

    def stop(self):
        """Stop capturing and release the input stream."""
        with self.lock:
            if self.state is CaptureState.STOPPED and self.stream is None:
                return

            logger.info("Stopping audio capture...")
            self._close_stream()
            self.state = CaptureState.STOPPED
            self.callback_errors = 0
            self._drain()
            logger.info("Audio capture stopped")

    def _close_stream(self):
        if self.stream is None:
            return
        try:
            self.stream.stop()
            self.stream.close()
        except Exception as e:
            logger.error(f"Error stopping input stream: {e}")
        finally:
            self.stream = None

    def _drain(self):
        while True:
            try:
                self.events.get_nowait()
            except queue.Empty:
                return

    def iter_events(self, stop_event: threading.Event, poll_interval: float = 0.1) -> Iterator[CaptureEvent]:
        """Yield (buffer, timestamp) pairs in capture order until stop_event is set."""
        while not stop_event.is_set():
            try:
                yield self.events.get(timeout=poll_interval)
            except queue.Empty:
                continue

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
