#!/usr/bin/env python3
"""
Recognition engine capability.

RecognitionEngine owns the threading model shared by all engines: a worker
thread consumes audio and control commands in FIFO order, a feeder thread
forwards an InputChannel into the worker, and results are published on a
ResultStream. Subclasses only provide locale/asset bookkeeping and the actual
recognition call. WhisperRecognitionEngine does that with faster-whisper.
"""

import logging
import math
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Set, Tuple

import numpy as np

from .audio_buffer import AudioBuffer, AudioFormat, SampleFormat
from .errors import AssetInstallError, EngineResultError, EngineUnavailable, SessionEnded
from .format_converter import FormatConverter
from .locales import language_code, normalize_locale
from .transcript import TranscriptDelta

logger = logging.getLogger(__name__)

Segment = Tuple[str, Optional[float]]

_AUDIO = "audio"
_MARK = "mark"
_FINALIZE = "finalize"
_STOP = "stop"

_CLOSED = object()
_END = object()


@dataclass
class EngineOptions:
    """Result granularity and recognition settings."""

    report_volatile: bool = True
    report_confidence: bool = True
    volatile_interval: float = 1.0  # seconds of new audio between volatile passes
    volatile_window: float = 10.0  # trailing seconds of pending audio a volatile pass looks at
    max_window: float = 30.0  # pending audio is finalized once it grows past this
    beam_size: int = 1
    vad_filter: bool = True


class InputChannel:
    """Unbounded FIFO of audio buffers feeding an engine."""

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, buffer: AudioBuffer) -> bool:
        """Enqueue without blocking. Returns False once the channel is closed."""
        with self._lock:
            if self._closed:
                return False
            self._queue.put_nowait(buffer)
            return True

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __iter__(self) -> Iterator[AudioBuffer]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


class ResultStream:
    """
    FIFO of TranscriptDeltas, terminated only by finish().

    fail() publishes an error without closing the stream: the iterator that
    reaches it raises, and a new iterator picks up the results that follow.
    """

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, delta: TranscriptDelta) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._queue.put_nowait(delta)
            return True

    def fail(self, error: BaseException) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._queue.put_nowait(error)
            return True

    def finish(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put_nowait(_END)

    def __iter__(self) -> Iterator[TranscriptDelta]:
        while True:
            item = self._queue.get()
            if item is _END:
                # leave the terminator for any later reader
                self._queue.put_nowait(_END)
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class RecognitionEngine(ABC):
    """Base class for speech recognition engines."""

    sample_rate = 16000
    max_reserved_locales = 5

    def __init__(self, options: Optional[EngineOptions] = None):
        self.options = options or EngineOptions()
        self.results = ResultStream()
        self.locale: Optional[str] = None

        self._reserved: Set[str] = set()
        self._converter = FormatConverter()
        self._commands: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._feeder: Optional[threading.Thread] = None
        self._channel: Optional[InputChannel] = None
        self._cancelled = threading.Event()
        self._finished = False
        self._lock = threading.Lock()

        # Worker-thread state
        self._pending = np.zeros(0, dtype=np.float32)
        self._pending_start = 0.0
        self._position = 0.0
        self._since_volatile = 0
        self._volatile_shown = False

    # Capability hooks

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def supported_locales(self) -> List[str]:
        """Locales the engine can transcribe."""

    @abstractmethod
    def installed_locales(self) -> List[str]:
        """Supported locales whose assets are already present."""

    @abstractmethod
    def _install_assets(self, locale: str):
        """Download/install whatever the locale needs."""

    @abstractmethod
    def _load(self, locale: str):
        """Load the recognition model for the locale."""

    @abstractmethod
    def _recognize(self, audio: np.ndarray) -> List[Segment]:
        """Transcribe mono float32 audio at `sample_rate`; returns (text, confidence) segments."""

    # Assets

    def reserve_locale(self, locale: str) -> bool:
        """Reserve assets for a locale. Returns False if it was already reserved."""
        locale = normalize_locale(locale)
        with self._lock:
            if locale in self._reserved:
                return False
            if len(self._reserved) >= self.max_reserved_locales:
                raise AssetInstallError(
                    f"Cannot reserve {locale}: at most {self.max_reserved_locales} locales may be reserved."
                )
            self._reserved.add(locale)
            return True

    def release_locale(self, locale: str):
        with self._lock:
            self._reserved.discard(normalize_locale(locale))

    @property
    def reserved_locales(self) -> Set[str]:
        return set(self._reserved)

    def install_assets(self, locale: str):
        locale = normalize_locale(locale)
        if locale in {normalize_locale(l) for l in self.installed_locales()}:
            return
        logger.info(f"Installing transcription assets for {locale}...")
        try:
            self._install_assets(locale)
        except Exception as e:
            logger.error(f"Asset installation failed for {locale}: {e}")
            raise AssetInstallError(f"Failed to install assets for {locale}: {e}") from e
        logger.info(f"Assets installed for {locale}")

    def best_audio_format(self) -> AudioFormat:
        return AudioFormat(float(self.sample_rate), 1, SampleFormat.FLOAT32)

    # Analysis lifecycle

    def prepare(self, locale: str):
        """Load the model and start the worker thread."""
        self._check_open()
        if self._worker is not None:
            return

        try:
            self._load(locale)
        except Exception as e:
            logger.error(f"Failed to load recognition model: {e}")
            raise EngineUnavailable(f"Failed to load recognition model: {e}") from e

        self.locale = normalize_locale(locale)
        self._worker = threading.Thread(target=self._run, name="recognition-worker", daemon=True)
        self._worker.start()

    def start(self, channel: InputChannel):
        """Begin analyzing an unbounded input channel."""
        self._check_open()
        self._feeder = threading.Thread(
            target=self._feed, args=(channel,), name="recognition-feeder", daemon=True
        )
        self._channel = channel
        self._feeder.start()

    def analyze_sequence(self, buffers: Iterable[AudioBuffer]) -> float:
        """Feed a finite sequence and return the audio position after its last sample."""
        self._check_open()
        for buffer in buffers:
            self._commands.put((_AUDIO, buffer))

        done = threading.Event()
        position = []
        self._commands.put((_MARK, (done, position)))
        self._wait(done)
        return position[0] if position else self._position

    def finalize(self, through: Optional[float] = None):
        """
        Finish recognition of accepted input up to `through` (seconds of audio).

        With None everything taken from the input so far is finalized. If the
        input channel is closed, the feeder is drained first.
        """
        self._check_open()
        feeder, channel = self._feeder, self._channel
        if feeder is not None and channel is not None and channel.closed:
            feeder.join()
            self._feeder = None
            self._channel = None

        done = threading.Event()
        self._commands.put((_FINALIZE, (through, done)))
        self._wait(done)

    def cancel_and_finish_now(self):
        """Stop immediately without finalizing. The engine cannot be used afterwards."""
        with self._lock:
            if self._finished:
                return
            self._finished = True

        self._cancelled.set()
        if self._channel is not None:
            self._channel.close()
        if self._feeder is not None:
            self._feeder.join(timeout=5)
        self._commands.put((_STOP, None))
        if self._worker is not None:
            self._worker.join(timeout=5)
        self.results.finish()
        logger.info("Recognition engine finished")

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def position(self) -> float:
        return self._position

    def _check_open(self):
        if self._finished:
            raise SessionEnded()

    def _wait(self, done: threading.Event):
        while not done.wait(0.5):
            if self._worker is None or not self._worker.is_alive():
                logger.warning("Recognition worker is not running")
                return

    # Threads

    def _feed(self, channel: InputChannel):
        for buffer in channel:
            if self._cancelled.is_set():
                break
            self._commands.put((_AUDIO, buffer))

    def _run(self):
        logger.info("Recognition worker started")
        while True:
            kind, payload = self._commands.get()
            if kind == _STOP:
                break
            try:
                if kind == _AUDIO:
                    if not self._cancelled.is_set():
                        self._accept(payload)
                elif kind == _MARK:
                    # end of a finite sequence
                    self._flush_converter()
                    payload[1].append(self._position)
                elif kind == _FINALIZE:
                    if not self._cancelled.is_set():
                        if payload[0] is None:
                            self._flush_converter()
                        self._finalize_pending(payload[0])
            except Exception as e:
                logger.error(f"Recognition failed: {e}")
                self._discard_pending()
                self.results.fail(EngineResultError(f"Recognition failed: {e}"))
            finally:
                if kind == _MARK:
                    payload[0].set()
                elif kind == _FINALIZE:
                    payload[1].set()
        logger.info("Recognition worker stopped")

    def _accept(self, buffer: AudioBuffer):
        self._append(self._converter.convert(buffer, self.best_audio_format()))

    def _flush_converter(self):
        tail = self._converter.flush()
        if tail is not None:
            self._append(tail)

    def _discard_pending(self):
        """Drop the failed activity's audio; the position keeps counting."""
        self._converter.flush()
        self._pending_start += self._pending.size / self.sample_rate
        self._pending = np.zeros(0, dtype=np.float32)
        self._since_volatile = 0
        self._volatile_shown = False

    def _append(self, converted: AudioBuffer):
        audio = converted.channel(0).astype(np.float32)
        if audio.size == 0:
            return

        self._pending = np.concatenate([self._pending, audio])
        self._position += audio.size / self.sample_rate
        self._since_volatile += audio.size

        pending_duration = self._pending.size / self.sample_rate
        if pending_duration >= self.options.max_window:
            self._finalize_pending(None)
            return

        if (self.options.report_volatile
                and self._since_volatile >= self.options.volatile_interval * self.sample_rate):
            self._emit_volatile()

    def _finalize_pending(self, through: Optional[float]):
        total = self._pending.size
        if through is None:
            cut = total
        else:
            cut = int(round((through - self._pending_start) * self.sample_rate))
            cut = max(0, min(cut, total))

        audio = self._pending[:cut]
        start = self._pending_start
        self._pending = self._pending[cut:]
        self._pending_start += cut / self.sample_rate
        self._since_volatile = 0

        if audio.size:
            self._emit_final(audio, start)

    def _emit_volatile(self):
        self._since_volatile = 0
        window = int(self.options.volatile_window * self.sample_rate)
        audio = self._pending[-window:] if 0 < window < self._pending.size else self._pending
        end = self._pending_start + self._pending.size / self.sample_rate

        text, _ = self._join(self._recognize(audio))
        if text:
            self.results.emit(TranscriptDelta(
                text, is_final=False,
                start=end - audio.size / self.sample_rate,
                end=end,
            ))
            self._volatile_shown = True

    def _emit_final(self, audio: np.ndarray, start: float):
        text, confidence = self._join(self._recognize(audio))
        if not text and not self._volatile_shown:
            return
        self.results.emit(TranscriptDelta(
            text, is_final=True,
            confidence=confidence if self.options.report_confidence else None,
            start=start,
            end=start + audio.size / self.sample_rate,
        ))
        self._volatile_shown = False

    @staticmethod
    def _join(segments: List[Segment]) -> Tuple[str, Optional[float]]:
        texts = [text.strip() for text, _ in segments if text and text.strip()]
        confidences = [c for text, c in segments if c is not None and text and text.strip()]
        confidence = float(np.mean(confidences)) if confidences else None
        return " ".join(texts), confidence


WHISPER_LANGUAGES = (
    "af", "am", "ar", "as", "az", "ba", "be", "bg", "bn", "bo", "br", "bs", "ca",
    "cs", "cy", "da", "de", "el", "en", "es", "et", "eu", "fa", "fi", "fo", "fr",
    "gl", "gu", "ha", "haw", "he", "hi", "hr", "ht", "hu", "hy", "id", "is", "it",
    "ja", "jw", "ka", "kk", "km", "kn", "ko", "la", "lb", "ln", "lo", "lt", "lv",
    "mg", "mi", "mk", "ml", "mn", "mr", "ms", "mt", "my", "ne", "nl", "nn", "no",
    "oc", "pa", "pl", "ps", "pt", "ro", "ru", "sa", "sd", "si", "sk", "sl", "sn",
    "so", "sq", "sr", "su", "sv", "sw", "ta", "te", "tg", "th", "tk", "tl", "tr",
    "tt", "uk", "ur", "uz", "vi", "yi", "yo", "yue", "zh",
)


class WhisperRecognitionEngine(RecognitionEngine):
    """Recognition engine backed by faster-whisper."""

    def __init__(
        self,
        model_name: str = "small",
        device: str = "auto",
        compute_type: str = "default",
        download_root: Optional[str] = None,
        options: Optional[EngineOptions] = None,
    ):
        super().__init__(options)
        self.model_name = model_name
        self.device = device
        self.compute_type = compute_type
        self.download_root = download_root

        self.model = None
        self.language: Optional[str] = None

    def is_available(self) -> bool:
        try:
            import faster_whisper  # noqa: F401
        except ImportError:
            logger.error("faster-whisper is not installed")
            return False
        return True

    def supported_locales(self) -> List[str]:
        # English-only checkpoints ("small.en") cannot do anything else
        if self.model_name.endswith(".en"):
            return ["en"]
        return list(WHISPER_LANGUAGES)

    def installed_locales(self) -> List[str]:
        if self._model_files_present():
            return self.supported_locales()
        return []

    def _model_files_present(self) -> bool:
        from faster_whisper import download_model

        try:
            download_model(self.model_name, local_files_only=True, cache_dir=self.download_root)
        except Exception:
            return False
        return True

    def _install_assets(self, locale: str):
        from faster_whisper import download_model

        download_model(self.model_name, cache_dir=self.download_root)

    def _load(self, locale: str):
        from faster_whisper import WhisperModel

        logger.info(f"Loading faster-whisper model: {self.model_name}")
        self.model = WhisperModel(
            self.model_name,
            device=self.device,
            compute_type=self.compute_type,
            download_root=self.download_root,
        )
        self.language = language_code(locale)
        logger.info("Model loaded successfully")

    def _recognize(self, audio: np.ndarray) -> List[Segment]:
        segments, _ = self.model.transcribe(
            audio.astype(np.float32),
            language=self.language,
            beam_size=self.options.beam_size,
            vad_filter=self.options.vad_filter,
            condition_on_previous_text=False,
        )

        results = []
        for segment in segments:
            text = segment.text.strip()
            if not text:
                continue
            # avg_logprob is a log-probability; exp() maps it onto [0, 1]
            confidence = math.exp(segment.avg_logprob) if segment.avg_logprob is not None else None
            results.append((text, confidence))
        return results
