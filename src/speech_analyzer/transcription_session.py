"""
Transcription session lifecycle.

A session wraps one recognition engine for one locale. Activities (a file or
a live stream) must be finalized before the next one starts so their results
never mix; ending the session is final.
"""

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Union

import soundfile as sf

from .audio_buffer import AudioBuffer, AudioFormat
from .errors import (
    AudioFileError,
    ConversionError,
    EngineUnavailable,
    LocaleNotSupported,
    SessionEnded,
    SessionError,
)
from .format_converter import FormatConverter
from .locales import resolve_locale
from .transcript import TranscriptDelta
from .transcription_engine import InputChannel, RecognitionEngine

logger = logging.getLogger(__name__)

FILE_BLOCK_SIZE = 4096


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    ACTIVE_FILE = "active_file"
    ACTIVE_STREAM = "active_stream"
    FINALIZING = "finalizing"
    ENDED = "ended"


def read_audio_file(path: Union[str, Path], block_size: int = FILE_BLOCK_SIZE) -> Iterator[AudioBuffer]:
    """Yield the contents of an audio file as float32 buffers."""
    try:
        audio_file = sf.SoundFile(str(path))
    except Exception as e:
        raise AudioFileError(f"Fail to read audio file {path}: {e}") from e

    with audio_file:
        for block in audio_file.blocks(blocksize=block_size, dtype='float32', always_2d=True):
            yield AudioBuffer.from_array(block, audio_file.samplerate)


class TranscriptionSession:
    """Finalize-before-reuse state machine around a RecognitionEngine."""

    def __init__(self, engine: RecognitionEngine, locale: str):
        self.engine = engine
        self.requested_locale = locale
        self.locale: Optional[str] = None
        self.audio_format: Optional[AudioFormat] = None
        self.converter = FormatConverter()

        self._state = SessionState.UNINITIALIZED
        self._channel: Optional[InputChannel] = None
        self._lock = threading.RLock()
        # guards the converter and channel writes; never held across engine waits
        self._push_lock = threading.Lock()
        self._reserved = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def results(self) -> Iterator[TranscriptDelta]:
        return iter(self.engine.results)

    def prepare(self):
        """Resolve the locale, reserve and install its assets, and load the engine."""
        with self._lock:
            self._check_not_ended()
            if self._state is not SessionState.UNINITIALIZED:
                return

            if not self.engine.is_available():
                raise EngineUnavailable()

            locale = resolve_locale(
                self.requested_locale,
                self.engine.supported_locales(),
                self.engine.installed_locales(),
            )
            if locale is None:
                raise LocaleNotSupported(
                    f"Locale selected is not supported by transcriber: {self.requested_locale}"
                )
            if locale != self.requested_locale:
                logger.info(f"Using locale {locale} for requested {self.requested_locale}")

            self.engine.reserve_locale(locale)
            self._reserved = True
            try:
                self.engine.install_assets(locale)
                self.engine.prepare(locale)
                self.audio_format = self.engine.best_audio_format()
            except Exception:
                self.engine.release_locale(locale)
                self._reserved = False
                raise

            self.locale = locale
            self._state = SessionState.READY
            logger.info(f"Transcription session ready ({locale}, {self.audio_format})")

    def transcribe_file(self, path: Union[str, Path]):
        """Feed a whole file through the engine and finalize through its last sample."""
        logger.info(f"Transcribing file: {path}")
        with self._lock:
            self._finalize_locked()
            self._check_ready()
            self._state = SessionState.ACTIVE_FILE

        try:
            # finalize needs the real end-of-input position reported by the feed
            end_position = self.engine.analyze_sequence(read_audio_file(path))
            self.engine.finalize(through=end_position)
        finally:
            with self._lock:
                if self._state is SessionState.ACTIVE_FILE:
                    self._state = SessionState.READY
        logger.info(f"File transcription finished ({end_position:.2f}s of audio)")

    def start_streaming(self):
        """Open a new unbounded input channel for live audio."""
        with self._lock:
            self._finalize_locked()
            self._check_ready()
            channel = InputChannel()
            self.engine.start(channel)
            self._channel = channel
            self._state = SessionState.ACTIVE_STREAM
            logger.info("Streaming transcription started")

    def push_buffer(self, buffer: AudioBuffer):
        """Convert and enqueue one live buffer. Never waits on the engine."""
        if self._state is SessionState.ENDED:
            raise SessionEnded()

        target = self.audio_format or buffer.format
        with self._push_lock:
            channel = self._channel
            if self._state is not SessionState.ACTIVE_STREAM or channel is None:
                logger.debug("Dropping buffer pushed outside of an active stream")
                return
            try:
                converted = self.converter.convert(buffer, target)
            except ConversionError as e:
                logger.warning(f"Error converting buffer, feeding unconverted audio: {e}")
                converted = buffer
            channel.put(converted)

    def _close_channel(self, flush: bool):
        """Close the stream's channel, first handing over held-back converter output."""
        with self._push_lock:
            channel, self._channel = self._channel, None
            if channel is None:
                return
            if flush:
                tail = self.converter.flush()
                if tail is not None and tail.frame_count:
                    channel.put(tail)
            channel.close()

    def finalize_previous(self):
        """Close the current input and wait until the engine finalized it."""
        with self._lock:
            self._check_not_ended()
            self._finalize_locked()

    def _finalize_locked(self):
        self._check_not_ended()
        if self._state not in (SessionState.ACTIVE_FILE, SessionState.ACTIVE_STREAM):
            return

        previous = self._state
        self._state = SessionState.FINALIZING
        try:
            self._close_channel(flush=True)
            self.engine.finalize(through=None)
        finally:
            if self._state is SessionState.FINALIZING:
                self._state = SessionState.READY
        logger.info(f"Finalized previous {previous.value} activity")

    def end_session(self):
        """Hard stop: cancel the engine and release the locale. Irreversible."""
        with self._lock:
            if self._state is SessionState.ENDED:
                return

            logger.info("Ending transcription session...")
            self._state = SessionState.ENDED
            self._close_channel(flush=False)
            try:
                self.engine.cancel_and_finish_now()
            finally:
                if self._reserved:
                    self.engine.release_locale(self.locale)
                    self._reserved = False
            logger.info("Transcription session ended")

    def _check_not_ended(self):
        if self._state is SessionState.ENDED:
            raise SessionEnded()

    def _check_ready(self):
        self._check_not_ended()
        if self._state is SessionState.UNINITIALIZED:
            raise SessionError("Transcription session has not been prepared.")

    def __enter__(self):
        self.prepare()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_session()
