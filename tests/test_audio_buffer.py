"""
Tests for audio_buffer module.
"""

import numpy as np
import pytest

from speech_analyzer.audio_buffer import AudioBuffer, AudioFormat, SampleFormat


class TestSampleFormat:
    """Test cases for SampleFormat."""

    def test_full_scale(self):
        assert SampleFormat.INT16.full_scale == 32767.0
        assert SampleFormat.INT32.full_scale == 2147483647.0
        assert SampleFormat.FLOAT32.full_scale == 1.0

    def test_from_dtype(self):
        assert SampleFormat.from_dtype(np.int16) is SampleFormat.INT16
        assert SampleFormat.from_dtype(np.float64) is SampleFormat.FLOAT32

    def test_from_dtype_unsupported(self):
        with pytest.raises(ValueError):
            SampleFormat.from_dtype(np.uint8)


class TestAudioFormat:
    """Test cases for AudioFormat."""

    def test_valid(self):
        assert AudioFormat(48000.0, 2).is_valid

    def test_zero_rate_invalid(self):
        assert not AudioFormat(0.0, 2).is_valid

    def test_nan_rate_invalid(self):
        assert not AudioFormat(float("nan"), 1).is_valid

    def test_zero_channels_invalid(self):
        assert not AudioFormat(16000.0, 0).is_valid


class TestAudioBuffer:
    """Test cases for AudioBuffer."""

    def test_mono_from_1d_array(self, sample_audio_data):
        audio_data, sample_rate = sample_audio_data
        buffer = AudioBuffer.from_array(audio_data, sample_rate)

        assert buffer.channel_count == 1
        assert buffer.frame_count == len(audio_data)
        assert buffer.sample_rate == 16000.0
        assert buffer.format.sample_format is SampleFormat.FLOAT32
        assert buffer.duration == pytest.approx(1.0)

    def test_copies_source_data(self):
        """Mutating the source array after construction must not leak into the buffer."""
        source = np.zeros((4, 2), dtype=np.float32)
        buffer = AudioBuffer.from_array(source, 48000)

        source[:] = 1.0

        assert np.all(buffer.samples == 0.0)

    def test_samples_are_read_only(self):
        buffer = AudioBuffer.from_array(np.zeros(8, dtype=np.float32), 16000)
        with pytest.raises(ValueError):
            buffer.samples[0, 0] = 1.0

    def test_stride_interleaved_and_planar(self):
        samples = np.zeros((10, 2), dtype=np.float32)
        interleaved = AudioBuffer.from_array(samples, 16000, interleaved=True)
        planar = AudioBuffer.from_array(samples, 16000, interleaved=False)

        assert interleaved.stride == 2
        assert planar.stride == 1

    def test_as_float_normalizes_int16(self):
        samples = np.array([32767, -32767, 0], dtype=np.int16)
        buffer = AudioBuffer.from_array(samples, 16000)

        np.testing.assert_allclose(buffer.as_float()[:, 0], [1.0, -1.0, 0.0])

    def test_channel_mismatch_rejected(self):
        with pytest.raises(ValueError):
            AudioBuffer(np.zeros((4, 2), dtype=np.float32), AudioFormat(16000.0, 1))

    def test_equality(self):
        a = AudioBuffer.from_array(np.ones(4, dtype=np.float32), 16000)
        b = AudioBuffer.from_array(np.ones(4, dtype=np.float32), 16000)
        c = AudioBuffer.from_array(np.ones(4, dtype=np.float32), 48000)

        assert a == b
        assert a != c

    def test_silence(self):
        buffer = AudioBuffer.silence(AudioFormat(16000.0, 2), 100)
        assert buffer.frame_count == 100
        assert not buffer.samples.any()
