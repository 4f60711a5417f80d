"""
Per-channel loudness metering.

Average (RMS) and peak levels are reported in decibels full-scale:
-160 dBFS (linear 1e-8) is the floor and 0 dBFS (linear 1.0) the ceiling.
"""

import math
from dataclasses import dataclass
from typing import List

import numpy as np

from .audio_buffer import AudioBuffer

MIN_LEVEL = 1e-8
MAX_LEVEL = 1.0
MIN_DB = -160.0
MAX_DB = 0.0


@dataclass(frozen=True)
class PowerLevel:
    """Power of one channel."""

    channel: int
    average: float
    peak: float

    @property
    def id(self) -> int:
        return self.channel


def to_decibels(value: float) -> float:
    """Convert a linear amplitude to dBFS, clamped to [-160, 0]."""
    if not value > MIN_LEVEL:
        # also catches NaN
        return MIN_DB
    if value >= MAX_LEVEL:
        return MAX_DB
    return 20.0 * math.log10(value)


def linear_power(decibels: float) -> float:
    return 10.0 ** (decibels / 20.0)


class LevelMeter:
    """Computes RMS and peak levels for every channel of a buffer."""

    def compute(self, buffer: AudioBuffer) -> List[PowerLevel]:
        data = buffer.as_float()
        levels = []
        for channel in range(buffer.channel_count):
            samples = data[:, channel].astype(np.float64)
            if samples.size == 0:
                levels.append(PowerLevel(channel, MIN_DB, MIN_DB))
                continue

            peak = float(np.max(np.abs(samples)))
            rms = float(np.sqrt(np.mean(np.square(samples))))
            levels.append(PowerLevel(channel, to_decibels(rms), to_decibels(peak)))
        return levels


_default_meter = LevelMeter()


def compute_power_levels(buffer: AudioBuffer) -> List[PowerLevel]:
    return _default_meter.compute(buffer)
