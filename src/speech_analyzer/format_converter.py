"""
Audio format conversion.

AudioConverter converts between one fixed pair of formats (rate, channel
layout, sample encoding). It is a streaming converter: consecutive calls are
treated as one continuous signal, so block boundaries neither click nor add
frames. FormatConverter keeps one AudioConverter around and rebuilds it only
when the requested formats change.
"""

import logging
import math
from enum import Enum
from fractions import Fraction
from typing import Callable, Optional, Tuple

import numpy as np
from scipy import signal

from .audio_buffer import AudioBuffer, AudioFormat
from .errors import BufferConversionError, ConverterCreationError

logger = logging.getLogger(__name__)

# Same anti-aliasing filter scipy.signal.resample_poly designs by default
KAISER_WINDOW = ('kaiser', 5.0)


class InputStatus(Enum):
    """Answer of an input block to a converter pull."""

    HAVE_DATA = "have_data"
    NO_DATA_NOW = "no_data_now"
    END_OF_STREAM = "end_of_stream"


class ConverterStatus(Enum):
    HAVE_DATA = "have_data"
    INPUT_RAN_DRY = "input_ran_dry"
    END_OF_STREAM = "end_of_stream"
    ERROR = "error"


InputBlock = Callable[[int], Tuple[InputStatus, Optional[AudioBuffer]]]


def _rate_ratio(input_rate: float, output_rate: float) -> Fraction:
    return Fraction(output_rate).limit_denominator(1_000_000) / \
        Fraction(input_rate).limit_denominator(1_000_000)


def output_frame_capacity(frame_count: int, input_rate: float, output_rate: float) -> int:
    """Frames needed to hold frame_count input frames after rate conversion."""
    return math.ceil(frame_count * _rate_ratio(input_rate, output_rate))


class AudioConverter:
    """
    Converts a stream of buffers from input_format to output_format.

    Rate conversion is the zero-phase polyphase FIR of resample_poly, evaluated
    incrementally: input history and the output phase are kept between calls.
    Output frame k needs input up to about half a filter length past its own
    time, so the last few frames of a call are held back until more input
    arrives or flush() ends the stream. Concatenating every call's output plus
    flush() equals resampling the whole signal at once.
    """

    def __init__(self, input_format: AudioFormat, output_format: AudioFormat):
        if not input_format.is_valid or not output_format.is_valid:
            raise ConverterCreationError(
                f"Fail to create Audio Converter from {input_format} to {output_format}."
            )

        in_channels, out_channels = input_format.channels, output_format.channels
        if in_channels != out_channels and in_channels != 1 and out_channels != 1:
            raise ConverterCreationError(
                f"Cannot map {in_channels} input channels to {out_channels} output channels."
            )

        self.input_format = input_format
        self.output_format = output_format

        ratio = _rate_ratio(input_format.sample_rate, output_format.sample_rate)
        self.up = ratio.numerator
        self.down = ratio.denominator
        self.last_error: Optional[str] = None

        self._taps: Optional[np.ndarray] = None
        self._half_len = 0
        if self.up != self.down:
            max_rate = max(self.up, self.down)
            self._half_len = 10 * max_rate
            self._taps = signal.firwin(
                2 * self._half_len + 1, 1.0 / max_rate, window=KAISER_WINDOW
            ) * self.up

        self._reset_stream()

    @property
    def sample_rate_ratio(self) -> float:
        return self.up / self.down

    @property
    def pending_frames(self) -> int:
        """Output frames owed for input already consumed."""
        if self._taps is None:
            return 0
        return self._stream_length() - self._produced

    def convert(self, frame_capacity: int, input_block: InputBlock) -> Tuple[ConverterStatus, Optional[AudioBuffer]]:
        """
        Pull input from input_block and produce at most frame_capacity frames.

        input_block may be called several times; it answers NO_DATA_NOW or
        END_OF_STREAM when it has nothing more to offer.
        """
        self.last_error = None
        frames_wanted = math.ceil(frame_capacity * self.down / self.up)

        chunks = []
        gathered = 0
        status = InputStatus.HAVE_DATA
        while gathered < frames_wanted:
            status, block = input_block(frames_wanted - gathered)
            if status is not InputStatus.HAVE_DATA or block is None:
                break
            if block.format != self.input_format:
                self.last_error = f"Input buffer format {block.format} does not match {self.input_format}."
                return ConverterStatus.ERROR, None
            chunks.append(block.as_float())
            gathered += block.frame_count

        if not chunks:
            if status is InputStatus.END_OF_STREAM:
                return ConverterStatus.END_OF_STREAM, None
            return ConverterStatus.INPUT_RAN_DRY, None

        try:
            data = np.concatenate(chunks, axis=0).astype(np.float64)
            data = self._remix(data)
            data = self._resample(data, frame_capacity)
            samples = self._quantize(data)
        except Exception as e:
            self.last_error = str(e)
            return ConverterStatus.ERROR, None

        converted = AudioBuffer(samples, self.output_format)
        if gathered < frames_wanted:
            return ConverterStatus.INPUT_RAN_DRY, converted
        return ConverterStatus.HAVE_DATA, converted

    def flush(self) -> Optional[AudioBuffer]:
        """End the stream: return the held-back output frames and start a new stream."""
        count = self.pending_frames
        samples = self._render(count) if count > 0 else None
        self._reset_stream()
        if samples is None:
            return None
        return AudioBuffer(self._quantize(samples), self.output_format)

    def _reset_stream(self):
        self._history = np.zeros((0, self.output_format.channels), dtype=np.float64)
        self._history_start = 0  # input index of _history[0]
        self._consumed = 0
        self._produced = 0

    def _remix(self, data: np.ndarray) -> np.ndarray:
        in_channels, out_channels = self.input_format.channels, self.output_format.channels
        if in_channels == out_channels:
            return data
        if in_channels == 1:
            return np.repeat(data, out_channels, axis=1)
        return data.mean(axis=1, keepdims=True)

    def _resample(self, data: np.ndarray, frame_capacity: int) -> np.ndarray:
        if self._taps is None:
            return data[:frame_capacity]

        self._history = np.concatenate([self._history, data], axis=0)
        self._consumed += data.shape[0]

        # frames whose whole filter support has arrived
        ready = (self._consumed * self.up - self._half_len - 1) // self.down + 1
        ready = min(ready, self._stream_length())
        return self._render(max(0, min(ready - self._produced, frame_capacity)))

    def _stream_length(self) -> int:
        return -(-self._consumed * self.up // self.down)

    def _first_input(self, k):
        # ceil((k * down - half_len) / up)
        return -((self._half_len - k * self.down) // self.up)

    def _render(self, count: int) -> np.ndarray:
        channels = self.output_format.channels
        if count <= 0 or self._history.shape[0] == 0:
            self._produced += max(count, 0)
            self._trim_history()
            return np.zeros((max(count, 0), channels), dtype=np.float64)

        ks = np.arange(self._produced, self._produced + count, dtype=np.int64)
        n_taps = (2 * self._half_len) // self.up + 1
        inputs = self._first_input(ks)[:, None] + np.arange(n_taps, dtype=np.int64)[None, :]
        taps = ks[:, None] * self.down + self._half_len - inputs * self.up

        valid = (
            (taps >= 0) & (taps <= 2 * self._half_len)
            & (inputs >= 0) & (inputs < self._consumed)
        )
        index = np.clip(inputs - self._history_start, 0, self._history.shape[0] - 1)
        weights = np.where(valid, self._taps[np.clip(taps, 0, 2 * self._half_len)], 0.0)
        output = np.einsum('kt,ktc->kc', weights, self._history[index])

        self._produced += count
        self._trim_history()
        return output

    def _trim_history(self):
        keep_from = min(max(0, int(self._first_input(self._produced))), self._consumed)
        drop = keep_from - self._history_start
        if drop > 0:
            self._history = self._history[drop:]
            self._history_start = keep_from

    def _quantize(self, data: np.ndarray) -> np.ndarray:
        sample_format = self.output_format.sample_format
        if sample_format.is_float:
            return data.astype(sample_format.dtype)
        scaled = np.round(np.clip(data, -1.0, 1.0) * sample_format.full_scale)
        return scaled.astype(sample_format.dtype)


class FormatConverter:
    """Converts buffers to a target format, reusing the converter while formats are stable."""

    def __init__(self):
        self._converter: Optional[AudioConverter] = None

    @property
    def converter(self) -> Optional[AudioConverter]:
        return self._converter

    def convert(self, buffer: AudioBuffer, target_format: AudioFormat) -> AudioBuffer:
        if buffer.format == target_format:
            return buffer

        converter = self._converter
        if (converter is None
                or converter.output_format != target_format
                or converter.input_format != buffer.format):
            if converter is not None and converter.pending_frames:
                logger.debug(f"Dropping {converter.pending_frames} held-back frames of the previous format")
            logger.debug(f"Creating audio converter: {buffer.format} -> {target_format}")
            self._converter = None
            converter = AudioConverter(buffer.format, target_format)
            self._converter = converter

        capacity = output_frame_capacity(
            buffer.frame_count, converter.input_format.sample_rate, converter.output_format.sample_rate
        )

        offered = False

        def input_block(frame_count: int):
            # The buffer is offered once; further pulls must not get it again.
            nonlocal offered
            if offered:
                return InputStatus.NO_DATA_NOW, None
            offered = True
            return InputStatus.HAVE_DATA, buffer

        status, converted = converter.convert(capacity, input_block)
        if status is ConverterStatus.ERROR:
            raise BufferConversionError(converter.last_error)
        if converted is None:
            return AudioBuffer.silence(target_format, 0)
        return converted

    def flush(self) -> Optional[AudioBuffer]:
        """Finish the current stream; returns its held-back frames, if any."""
        if self._converter is None:
            return None
        return self._converter.flush()
