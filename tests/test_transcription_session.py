"""
Tests for transcription_session module.
"""

import os

import pytest
from unittest.mock import patch

from conftest import ScriptedEngine
from speech_analyzer.errors import (
    AssetInstallError,
    AudioFileError,
    BufferConversionError,
    EngineUnavailable,
    LocaleNotSupported,
    SessionEnded,
    SessionError,
)
from speech_analyzer.transcription_session import (
    SessionState,
    TranscriptionSession,
    read_audio_file,
)


@pytest.fixture
def session(engine):
    session = TranscriptionSession(engine, "en-US")
    yield session
    session.end_session()


@pytest.fixture
def ready_session(session):
    session.prepare()
    return session


def finish(session):
    session.end_session()
    return list(session.results)


class TestReadAudioFile:
    """Test cases for file reading."""

    def test_blocks_cover_file(self, wav_file):
        buffers = list(read_audio_file(wav_file, block_size=4096))

        assert sum(b.frame_count for b in buffers) == 32000
        assert all(b.sample_rate == 16000.0 for b in buffers)
        assert buffers[0].frame_count == 4096

    def test_missing_file(self, temp_dir):
        with pytest.raises(AudioFileError):
            list(read_audio_file(os.path.join(temp_dir, "missing.wav")))


class TestPrepare:
    """Test cases for session preparation."""

    def test_prepare_exact_locale(self, session, engine):
        session.prepare()

        assert session.state is SessionState.READY
        assert session.locale == "en-US"
        assert engine.reserved_locales == {"en-US"}
        assert engine.loaded_locale == "en-US"
        assert session.audio_format == engine.best_audio_format()

    def test_prepare_is_idempotent(self, ready_session, engine):
        ready_session.prepare()
        assert engine.reserved_locales == {"en-US"}

    def test_equivalent_locale_prefers_installed(self):
        engine = ScriptedEngine(installed=("en-GB",))
        session = TranscriptionSession(engine, "en_AU")

        session.prepare()

        assert session.locale == "en-GB"
        assert engine.install_calls == []
        session.end_session()

    def test_missing_assets_are_installed(self):
        engine = ScriptedEngine()
        session = TranscriptionSession(engine, "de-DE")

        session.prepare()

        assert engine.install_calls == ["de-DE"]
        session.end_session()

    def test_unsupported_locale(self, engine):
        session = TranscriptionSession(engine, "fr-FR")

        with pytest.raises(LocaleNotSupported):
            session.prepare()
        assert engine.reserved_locales == set()
        assert session.state is SessionState.UNINITIALIZED

    def test_engine_unavailable(self):
        session = TranscriptionSession(ScriptedEngine(available=False), "en-US")
        with pytest.raises(EngineUnavailable):
            session.prepare()

    def test_install_failure_releases_reservation(self):
        engine = ScriptedEngine(fail_install=True)
        session = TranscriptionSession(engine, "de-DE")

        with pytest.raises(AssetInstallError):
            session.prepare()
        assert engine.reserved_locales == set()

    def test_load_failure_releases_reservation(self):
        engine = ScriptedEngine(fail_load=True)
        session = TranscriptionSession(engine, "en-US")

        with pytest.raises(EngineUnavailable):
            session.prepare()
        assert engine.reserved_locales == set()

    def test_unprepared_session_rejects_work(self, session):
        with pytest.raises(SessionError):
            session.start_streaming()


class TestFileTranscription:
    """Test cases for file transcription."""

    def test_transcribe_file(self, ready_session, engine, wav_file):
        ready_session.transcribe_file(wav_file)

        assert ready_session.state is SessionState.READY
        assert engine.recognized == [32000]
        deltas = finish(ready_session)
        assert len(deltas) == 1
        assert deltas[0].is_final
        assert deltas[0].end == pytest.approx(2.0)

    def test_missing_file(self, ready_session, temp_dir):
        with pytest.raises(AudioFileError):
            ready_session.transcribe_file(os.path.join(temp_dir, "missing.wav"))
        assert ready_session.state is SessionState.READY

    def test_file_after_stream_finalizes_stream_first(self, ready_session, engine, make_buffer, wav_file):
        ready_session.start_streaming()
        ready_session.push_buffer(make_buffer(frames=1600))

        ready_session.transcribe_file(wav_file)

        assert engine.recognized == [1600, 32000]
        texts = [d.text for d in finish(ready_session)]
        assert texts == ["1600 samples", "32000 samples"]


class TestStreaming:
    """Test cases for live streaming."""

    def test_stream_and_finalize(self, ready_session, engine, make_buffer):
        ready_session.start_streaming()
        assert ready_session.state is SessionState.ACTIVE_STREAM

        for _ in range(5):
            ready_session.push_buffer(make_buffer(frames=1600))
        ready_session.finalize_previous()

        assert ready_session.state is SessionState.READY
        assert engine.recognized == [8000]

    def test_live_buffers_are_converted(self, ready_session, engine, make_buffer):
        ready_session.start_streaming()
        ready_session.push_buffer(make_buffer(frames=4800, sample_rate=48000, channels=2))
        ready_session.finalize_previous()

        assert engine.recognized == [1600]

    def test_small_live_blocks_keep_their_length(self, ready_session, engine, make_buffer):
        ready_session.start_streaming()
        for _ in range(10):
            ready_session.push_buffer(make_buffer(frames=480, sample_rate=48000))
        ready_session.finalize_previous()

        # frames held back by the resampler are handed over at finalize
        assert engine.recognized == [1600]

    def test_conversion_failure_feeds_raw_buffer(self, ready_session, engine, make_buffer):
        ready_session.start_streaming()
        with patch.object(ready_session.converter, "convert", side_effect=BufferConversionError("bad block")):
            ready_session.push_buffer(make_buffer(frames=4800, sample_rate=48000))
        ready_session.finalize_previous()

        # the engine coerces unconverted input itself
        assert engine.recognized == [1600]

    def test_push_outside_stream_is_ignored(self, ready_session, engine, make_buffer):
        ready_session.push_buffer(make_buffer())
        ready_session.finalize_previous()

        assert engine.recognized == []

    def test_restart_streaming_finalizes_previous(self, ready_session, engine, make_buffer):
        ready_session.start_streaming()
        ready_session.push_buffer(make_buffer(frames=3200))
        ready_session.start_streaming()
        ready_session.push_buffer(make_buffer(frames=1600))
        ready_session.finalize_previous()

        assert engine.recognized == [3200, 1600]

    def test_finalize_when_idle(self, ready_session):
        ready_session.finalize_previous()
        assert ready_session.state is SessionState.READY


class TestEndSession:
    """Test cases for ending a session."""

    def test_end_session_is_terminal(self, ready_session, engine, make_buffer, wav_file):
        ready_session.start_streaming()
        ready_session.end_session()

        assert ready_session.state is SessionState.ENDED
        assert engine.is_finished
        assert engine.reserved_locales == set()
        with pytest.raises(SessionEnded):
            ready_session.push_buffer(make_buffer())
        with pytest.raises(SessionEnded):
            ready_session.start_streaming()
        with pytest.raises(SessionEnded):
            ready_session.transcribe_file(wav_file)
        with pytest.raises(SessionEnded):
            ready_session.finalize_previous()
        with pytest.raises(SessionEnded):
            ready_session.prepare()

    def test_end_session_is_idempotent(self, ready_session):
        ready_session.end_session()
        ready_session.end_session()
        assert list(ready_session.results) == []

    def test_end_discards_unfinalized_audio(self, ready_session, engine, make_buffer):
        ready_session.start_streaming()
        ready_session.push_buffer(make_buffer())

        assert finish(ready_session) == []

    def test_end_unprepared_session(self, session, engine):
        session.end_session()
        assert session.state is SessionState.ENDED

    def test_context_manager(self, engine):
        with TranscriptionSession(engine, "en-US") as session:
            assert session.state is SessionState.READY
        assert session.state is SessionState.ENDED
