"""
Immutable PCM audio buffers.

An AudioBuffer is a read-only numpy array shaped (frames, channels) together
with the AudioFormat describing it. Interleaved buffers are stored C-ordered,
planar buffers Fortran-ordered, so the per-channel stride matches the layout.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np


class SampleFormat(Enum):
    """Sample encodings a buffer can carry."""

    INT16 = "int16"
    INT32 = "int32"
    FLOAT32 = "float32"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @property
    def is_float(self) -> bool:
        return self is SampleFormat.FLOAT32

    @property
    def full_scale(self) -> float:
        """Magnitude that maps to 0 dBFS."""
        if self is SampleFormat.INT16:
            return float(np.iinfo(np.int16).max)
        if self is SampleFormat.INT32:
            return float(np.iinfo(np.int32).max)
        return 1.0

    @classmethod
    def from_dtype(cls, dtype) -> "SampleFormat":
        dtype = np.dtype(dtype)
        for sample_format in cls:
            if sample_format.dtype == dtype:
                return sample_format
        if dtype.kind == "f":
            return cls.FLOAT32
        raise ValueError(f"Unsupported sample dtype: {dtype}")


@dataclass(frozen=True)
class AudioFormat:
    """Sample rate, channel layout and encoding of a buffer."""

    sample_rate: float
    channels: int
    sample_format: SampleFormat = SampleFormat.FLOAT32
    interleaved: bool = True

    @property
    def is_valid(self) -> bool:
        if self.sample_rate is None or math.isnan(self.sample_rate):
            return False
        return self.sample_rate > 0 and self.channels > 0

    def __str__(self) -> str:
        layout = "interleaved" if self.interleaved else "planar"
        return (f"{self.sample_rate:g} Hz, {self.channels} ch, "
                f"{self.sample_format.value}, {layout}")


class AudioBuffer:
    """Read-only audio samples plus their format."""

    __slots__ = ("_format", "_samples")

    def __init__(self, samples: np.ndarray, audio_format: AudioFormat):
        data = np.array(samples, dtype=audio_format.sample_format.dtype, copy=True)
        if data.ndim == 1:
            data = data.reshape(-1, 1)
        if data.ndim != 2:
            raise ValueError(f"Expected (frames, channels) samples, got shape {data.shape}")
        if data.shape[1] != audio_format.channels:
            raise ValueError(
                f"Sample data has {data.shape[1]} channels, format declares {audio_format.channels}"
            )

        if audio_format.interleaved:
            data = np.ascontiguousarray(data)
        else:
            data = np.asfortranarray(data)
        data.setflags(write=False)

        self._format = audio_format
        self._samples = data

    @classmethod
    def from_array(
        cls,
        samples: np.ndarray,
        sample_rate: float,
        sample_format: Optional[SampleFormat] = None,
        interleaved: bool = True,
    ) -> "AudioBuffer":
        """Build a buffer from a 1-D (mono) or (frames, channels) array."""
        samples = np.asarray(samples)
        if sample_format is None:
            sample_format = SampleFormat.from_dtype(samples.dtype)
        channels = 1 if samples.ndim == 1 else samples.shape[1]
        audio_format = AudioFormat(float(sample_rate), channels, sample_format, interleaved)
        return cls(samples, audio_format)

    @classmethod
    def silence(cls, audio_format: AudioFormat, frame_count: int) -> "AudioBuffer":
        samples = np.zeros((frame_count, audio_format.channels),
                           dtype=audio_format.sample_format.dtype)
        return cls(samples, audio_format)

    @property
    def format(self) -> AudioFormat:
        return self._format

    @property
    def samples(self) -> np.ndarray:
        return self._samples

    @property
    def sample_rate(self) -> float:
        return self._format.sample_rate

    @property
    def channel_count(self) -> int:
        return self._format.channels

    @property
    def frame_count(self) -> int:
        return self._samples.shape[0]

    @property
    def stride(self) -> int:
        """Distance in samples between consecutive frames of one channel."""
        return self._samples.strides[0] // self._samples.itemsize

    @property
    def duration(self) -> float:
        if not self._format.is_valid:
            return 0.0
        return self.frame_count / self.sample_rate

    def channel(self, index: int) -> np.ndarray:
        return self._samples[:, index]

    def as_float(self) -> np.ndarray:
        """Samples as float32 normalized to [-1, 1]."""
        data = self._samples.astype(np.float32)
        if not self._format.sample_format.is_float:
            data /= self._format.sample_format.full_scale
        return data

    def __len__(self) -> int:
        return self.frame_count

    def __eq__(self, other) -> bool:
        if not isinstance(other, AudioBuffer):
            return NotImplemented
        return self._format == other._format and np.array_equal(self._samples, other._samples)

    def __hash__(self):
        return hash((self._format, self._samples.tobytes()))

    def __repr__(self) -> str:
        return f"AudioBuffer({self.frame_count} frames, {self._format})"
