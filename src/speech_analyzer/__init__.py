"""
Speech Analyzer

Captures live or file-based audio, streams it into a speech recognition
session and publishes volatile and finalized transcripts together with
per-channel loudness levels.
"""

__version__ = "1.0.0"
__description__ = "Live and file speech transcription with loudness metering"

from .audio_buffer import AudioBuffer, AudioFormat, SampleFormat
from .audio_capture import AudioCapture, CaptureState
from .format_converter import FormatConverter
from .level_meter import LevelMeter, PowerLevel, compute_power_levels
from .manager import ManagerSnapshot, TranscriptionManager
from .transcript import Transcript, TranscriptDelta
from .transcription_engine import EngineOptions, RecognitionEngine, WhisperRecognitionEngine
from .transcription_session import SessionState, TranscriptionSession

__all__ = [
    "AudioBuffer",
    "AudioCapture",
    "AudioFormat",
    "CaptureState",
    "EngineOptions",
    "FormatConverter",
    "LevelMeter",
    "ManagerSnapshot",
    "PowerLevel",
    "RecognitionEngine",
    "SampleFormat",
    "SessionState",
    "Transcript",
    "TranscriptDelta",
    "TranscriptionManager",
    "TranscriptionSession",
    "WhisperRecognitionEngine",
    "compute_power_levels",
]
