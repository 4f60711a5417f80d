"""
Transcription manager.

Composes the audio capture, the transcription session and the level meter
into one lifecycle. Two bridging threads move data between them: one consumes
captured buffers, the other consumes transcription results. Observers get an
immutable ManagerSnapshot after every state change.
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from .audio_capture import AudioCapture, CaptureState
from .errors import EngineResultError, ManagerNotReady, error_message
from .level_meter import LevelMeter, PowerLevel
from .transcript import Transcript
from .transcription_engine import RecognitionEngine, WhisperRecognitionEngine
from .transcription_session import TranscriptionSession

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en-US"

Observer = Callable[["ManagerSnapshot"], None]


@dataclass(frozen=True)
class ManagerSnapshot:
    """Everything a presentation layer needs to render the current state."""

    capture_state: CaptureState = CaptureState.STOPPED
    is_transcribing: bool = False
    is_setting_up: bool = False
    locale: str = DEFAULT_LOCALE
    finalized_transcript: str = ""
    volatile_transcript: str = ""
    confidence: Optional[float] = None
    power_levels: Tuple[PowerLevel, ...] = ()
    elapsed_time: Optional[float] = None
    error: Optional[BaseException] = None

    @property
    def error_message(self) -> Optional[str]:
        return error_message(self.error) if self.error is not None else None

    @property
    def show_error(self) -> bool:
        return self.error is not None


class TranscriptionManager:
    """Real-time and file transcription with loudness metering."""

    def __init__(
        self,
        locale: str = DEFAULT_LOCALE,
        engine_factory: Optional[Callable[[], RecognitionEngine]] = None,
        capture_factory: Optional[Callable[[], AudioCapture]] = None,
        level_meter: Optional[LevelMeter] = None,
    ):
        self.engine_factory = engine_factory or WhisperRecognitionEngine
        self.capture_factory = capture_factory or AudioCapture
        self.level_meter = level_meter or LevelMeter()

        self.locale = locale
        self.capture_state = CaptureState.STOPPED
        self.is_transcribing = False
        self.is_setting_up = False
        self.transcript = Transcript()
        self.power_levels: Optional[List[PowerLevel]] = None
        self.elapsed_time: Optional[float] = None
        self.error: Optional[BaseException] = None

        self.session: Optional[TranscriptionSession] = None
        self.capture: Optional[AudioCapture] = None

        self._capture_start_time: Optional[float] = None
        self._observers: List[Observer] = []
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._audio_thread: Optional[threading.Thread] = None
        self._results_thread: Optional[threading.Thread] = None
        self._end_threads: List[threading.Thread] = []
        # set while start_real_time or stop runs outside the lock
        self._busy = False

    # Observation

    def subscribe(self, observer: Observer):
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: Observer):
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def snapshot(self) -> ManagerSnapshot:
        with self._lock:
            return ManagerSnapshot(
                capture_state=self.capture_state,
                is_transcribing=self.is_transcribing,
                is_setting_up=self.is_setting_up,
                locale=self.locale,
                finalized_transcript=self.transcript.finalized,
                volatile_transcript=self.transcript.volatile,
                confidence=self.transcript.confidence,
                power_levels=tuple(self.power_levels or ()),
                elapsed_time=self.elapsed_time,
                error=self.error,
            )

    def _update(self, **changes):
        with self._lock:
            for name, value in changes.items():
                setattr(self, name, value)
                if name == "capture_state":
                    self._on_capture_state(value)
            snapshot = self.snapshot()
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(snapshot)
            except Exception as e:
                logger.error(f"Observer failed: {e}")

    def _on_capture_state(self, state: CaptureState):
        if state is CaptureState.STARTED:
            self._capture_start_time = time.monotonic()
        elif state is CaptureState.STOPPED:
            self._capture_start_time = None
            self.power_levels = None
            self.elapsed_time = None

    def _record_error(self, error: BaseException):
        logger.error(f"Transcription error: {error_message(error)}")
        self._update(error=error, is_setting_up=False)

    def dismiss_error(self):
        self._update(error=None)

    # Setup and teardown

    def setup(self):
        """Create the transcription session and audio capture and start the bridging threads."""
        self._update(is_setting_up=True)
        try:
            self._setup_session(self.locale)
            self.capture = self.capture_factory()
            self._stop_event.clear()
            self._audio_thread = threading.Thread(
                target=self._process_audio, name="audio-bridge", daemon=True
            )
            self._audio_thread.start()
        except Exception as e:
            self._record_error(e)
            raise
        self._update(is_setting_up=False)
        logger.info("Transcription manager ready")

    def _setup_session(self, locale: str):
        session = TranscriptionSession(self.engine_factory(), locale)
        try:
            session.prepare()
        except Exception:
            session.end_session()
            raise

        self.session = session
        self._results_thread = threading.Thread(
            target=self._process_results, args=(session,), name="results-bridge", daemon=True
        )
        self._results_thread.start()

    def teardown(self, wait: bool = False):
        """Cancel the bridging threads and end the session without finalizing."""
        logger.info("Tearing down transcription manager...")
        self._stop_event.set()

        if self.capture is not None:
            self.capture.stop()

        session = self.session
        self.session = None
        if session is not None:
            # ending is not awaited unless asked for
            end_thread = threading.Thread(target=session.end_session, name="session-end", daemon=True)
            end_thread.start()
            self._end_threads.append(end_thread)

        if self._audio_thread is not None:
            self._audio_thread.join(timeout=5)
            self._audio_thread = None

        if wait:
            for end_thread in self._end_threads:
                end_thread.join(timeout=10)
            self._end_threads.clear()
            if self._results_thread is not None:
                self._results_thread.join(timeout=5)
                self._results_thread = None

        self._update(capture_state=CaptureState.STOPPED, is_transcribing=False)

    def __enter__(self):
        self.setup()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.teardown(wait=True)

    # Transcription

    def transcribe_file(self, path: Union[str, Path]) -> bool:
        """Transcribe a whole file. Returns False if a transcription is already running."""
        session = self._require_session()
        with self._lock:
            if self.is_transcribing or self._busy:
                logger.warning("Already transcribing, ignoring file request")
                return False
            self.transcript.reset()
            self._update(is_transcribing=True)

        try:
            session.transcribe_file(path)
        except Exception as e:
            self._record_error(e)
            raise
        finally:
            self._update(is_transcribing=False)
        return True

    def start_real_time(self) -> bool:
        """Start live capture and streaming transcription."""
        session = self._require_session()
        if self.capture is None:
            raise ManagerNotReady("Failed to setup Audio Engine.")

        with self._lock:
            if (self.is_transcribing or self._busy
                    or self.capture_state is not CaptureState.STOPPED):
                logger.warning("Real-time transcription already running")
                return False
            self._busy = True

        # engine waits happen outside the lock
        try:
            try:
                self.capture.start()
            except Exception as e:
                self._record_error(e)
                raise

            try:
                session.start_streaming()
            except Exception as e:
                # never leave capture running without a stream to feed
                self.capture.stop()
                self._record_error(e)
                raise

            with self._lock:
                self.transcript.reset()
                self._update(capture_state=CaptureState.STARTED, is_transcribing=True)
        finally:
            with self._lock:
                self._busy = False
        logger.info("Real-time transcription started")
        return True

    def pause(self):
        with self._lock:
            if self.capture_state is not CaptureState.STARTED:
                return
            self._update(capture_state=CaptureState.PAUSED)
            self.capture.pause()

    def resume(self):
        with self._lock:
            if self.capture_state is not CaptureState.PAUSED:
                return
            try:
                self.capture.resume()
            except Exception as e:
                self._record_error(e)
                raise
            self._update(capture_state=CaptureState.STARTED)

    def stop(self):
        """Stop capture and finalize the current activity. Safe from any state."""
        with self._lock:
            if self._busy:
                return
            if self.capture_state is CaptureState.STOPPED and not self.is_transcribing:
                return
            self._busy = True
            session = self.session

        logger.info("Stopping transcription...")
        try:
            if self.capture is not None:
                self.capture.stop()
            self._update(capture_state=CaptureState.STOPPED)
            # results keep flowing while the engine finalizes
            if session is not None:
                session.finalize_previous()
        finally:
            with self._lock:
                self._busy = False
            self._update(is_transcribing=False)
        logger.info("Transcription stopped")

    def update_locale(self, locale: str) -> bool:
        """Rebuild the session for a new locale. Rejected while transcribing."""
        with self._lock:
            if locale == self.locale:
                return False
            if self.is_transcribing or self._busy:
                logger.warning("Cannot change locale while transcribing")
                return False

            logger.info(f"Switching locale: {self.locale} -> {locale}")
            self.transcript.reset()
            self._update(is_setting_up=True, locale=locale)

            old_session, old_thread = self.session, self._results_thread
            self.session = None
            self._results_thread = None

        # the old results thread may still be waiting for the lock
        if old_session is not None:
            old_session.end_session()
        if old_thread is not None:
            old_thread.join(timeout=5)

        try:
            self._setup_session(locale)
        except Exception as e:
            self._record_error(e)
            raise
        self._update(is_setting_up=False)
        return True

    def supported_locales(self) -> List[Tuple[str, bool]]:
        """(locale, installed) pairs offered by the engine."""
        engine = self.session.engine if self.session is not None else self.engine_factory()
        installed = set(engine.installed_locales())
        return [(locale, locale in installed) for locale in engine.supported_locales()]

    def _require_session(self) -> TranscriptionSession:
        if self.session is None:
            raise ManagerNotReady("Failed to set up speech analyzer.")
        return self.session

    # Bridging threads

    def _process_audio(self):
        logger.info("Audio bridging thread started")
        capture = self.capture
        for buffer, timestamp in capture.iter_events(self._stop_event):
            if self.capture_state is not CaptureState.STARTED:
                continue

            session = self.session
            if session is not None:
                try:
                    session.push_buffer(buffer)
                except Exception as e:
                    logger.error(f"Failed to push audio buffer: {e}")

            levels = self.level_meter.compute(buffer)
            with self._lock:
                # capture may have stopped while this buffer was in flight
                start_time = self._capture_start_time
                if self.capture_state is CaptureState.STARTED and start_time is not None:
                    self._update(power_levels=levels, elapsed_time=max(0.0, timestamp - start_time))
        logger.info("Audio bridging thread stopped")

    def _process_results(self, session: TranscriptionSession):
        logger.info("Results bridging thread started")
        # a failed activity does not end the stream; later activities still publish
        while True:
            try:
                for delta in session.results:
                    with self._lock:
                        self.transcript.apply(delta)
                    self._update()
                    if delta.is_final:
                        logger.info(f"Final: {delta.text}")
                break
            except EngineResultError as e:
                self._record_error(e)
                if self.is_transcribing:
                    try:
                        self.stop()
                    except Exception as stop_error:
                        logger.error(f"Failed to stop after result error: {stop_error}")
        logger.info("Results bridging thread stopped")
