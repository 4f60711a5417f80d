"""
Speech Analyzer command line.

Transcribes an audio file or the live microphone and prints transcript and
loudness updates to the console.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Optional

# Local imports
sys.path.append(os.path.join(os.path.dirname(__file__)))

from speech_analyzer.audio_capture import AudioCapture, CaptureState
from speech_analyzer.errors import error_message
from speech_analyzer.logger import format_confidence, format_power, format_time, setup_logging
from speech_analyzer.manager import DEFAULT_LOCALE, ManagerSnapshot, TranscriptionManager
from speech_analyzer.transcription_engine import EngineOptions, WhisperRecognitionEngine

logger = logging.getLogger(__name__)


class ConsoleTranscriber:
    """Runs a TranscriptionManager and reports its updates on the console."""

    def __init__(
        self,
        device: Optional[int] = None,
        locale: str = DEFAULT_LOCALE,
        model_name: str = "small",
        device_type: str = "auto",
        compute_type: str = "default",
        show_levels: bool = True,
    ):
        self.device = device
        self.locale = locale
        self.model_name = model_name
        self.device_type = device_type
        self.compute_type = compute_type
        self.show_levels = show_levels

        self.manager = TranscriptionManager(
            locale=locale,
            engine_factory=self._create_engine,
            capture_factory=lambda: AudioCapture(device=self.device),
        )
        self.manager.subscribe(self._on_update)

        self.shutdown_event = threading.Event()
        self._last_final = ""
        self._last_volatile = ""

    def _create_engine(self) -> WhisperRecognitionEngine:
        return WhisperRecognitionEngine(
            model_name=self.model_name,
            device=self.device_type,
            compute_type=self.compute_type,
            options=EngineOptions(),
        )

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.shutdown_event.set()

    def _on_update(self, snapshot: ManagerSnapshot):
        if snapshot.finalized_transcript != self._last_final:
            added = snapshot.finalized_transcript[len(self._last_final):].strip()
            self._last_final = snapshot.finalized_transcript
            if added:
                print(f"FINAL [{format_confidence(snapshot.confidence)}]: {added}")

        if snapshot.volatile_transcript and snapshot.volatile_transcript != self._last_volatile:
            print(f"  ... {snapshot.volatile_transcript}")
        self._last_volatile = snapshot.volatile_transcript

        if self.show_levels and snapshot.power_levels and snapshot.elapsed_time is not None:
            levels = ", ".join(
                f"ch{level.channel}: {format_power(level.average)} / {format_power(level.peak)}"
                for level in snapshot.power_levels
            )
            logger.debug(f"[{format_time(snapshot.elapsed_time)}] {levels}")

    def transcribe_file(self, path: str) -> str:
        with self.manager:
            self.manager.transcribe_file(path)
        # results still in flight are drained once the session has ended
        return self.manager.snapshot().finalized_transcript

    def run_live(self, duration: Optional[float] = None):
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        with self.manager:
            self.manager.start_real_time()
            print("=" * 60)
            print("LIVE TRANSCRIPTION ACTIVE")
            print(f"Model: {self.model_name} ({self.manager.locale})")
            print("Press Ctrl+C to stop transcription")
            print("=" * 60)

            self.shutdown_event.wait(duration)
            if self.manager.snapshot().capture_state is not CaptureState.STOPPED:
                self.manager.stop()

        snapshot = self.manager.snapshot()
        if snapshot.error is not None:
            logger.error(f"Transcription failed: {snapshot.error_message}")
        return snapshot.finalized_transcript


def list_audio_devices():
    """List available audio input devices."""
    devices = AudioCapture.list_input_devices()
    print("\n=== AUDIO INPUT DEVICES ===")
    if not devices:
        print("  No input devices found")
    for device in devices:
        print(f"  [{device['id']:2d}] {device['name']}")
        print(f"       {device['channels']} channels, {device['sample_rate']:.0f} Hz")


def list_locales(model_name: str):
    manager = TranscriptionManager(engine_factory=lambda: WhisperRecognitionEngine(model_name=model_name))
    print("\n=== SUPPORTED LOCALES ===")
    for locale, installed in manager.supported_locales():
        marker = " (installed)" if installed else ""
        print(f"  {locale}{marker}")


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Live and file speech transcription with loudness metering",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List available audio devices
  python main.py --list-devices

  # Transcribe the microphone until Ctrl+C
  python main.py

  # Transcribe a file in German
  python main.py --file interview.wav --lang de-DE

  # Transcribe 30 seconds with the tiny model
  python main.py --duration 30 --model tiny
        """
    )

    parser.add_argument('--list-devices', '-l', action='store_true',
                        help='List available audio input devices and exit')
    parser.add_argument('--list-locales', action='store_true',
                        help='List supported locales and exit')
    parser.add_argument('--device', '-d', type=int,
                        help='Input device ID (use --list-devices to see options)')
    parser.add_argument('--file', '-f', type=str,
                        help='Transcribe an audio file instead of the microphone')
    parser.add_argument('--duration', type=float,
                        help='Stop live transcription after this many seconds')

    parser.add_argument('--lang', type=str, default=DEFAULT_LOCALE,
                        help=f'Locale for transcription (default: {DEFAULT_LOCALE})')
    parser.add_argument('--model', type=str, default='small',
                        help='Whisper model to use (default: small)')
    parser.add_argument('--device-type', type=str, default='auto',
                        choices=['auto', 'cpu', 'cuda'],
                        help='Inference device (default: auto)')
    parser.add_argument('--compute-type', type=str, default='default',
                        help='CTranslate2 compute type (default: default)')

    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)

    if args.list_devices:
        list_audio_devices()
        return 0

    if args.list_locales:
        list_locales(args.model)
        return 0

    transcriber = ConsoleTranscriber(
        device=args.device,
        locale=args.lang,
        model_name=args.model,
        device_type=args.device_type,
        compute_type=args.compute_type,
        show_levels=args.verbose,
    )

    try:
        if args.file:
            transcriber.transcribe_file(args.file)
        else:
            transcriber.run_live(args.duration)
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Application failed: {error_message(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
