"""
Tests for logger module.
"""

import logging

import pytest
from unittest.mock import patch

from speech_analyzer.logger import (
    LOG_FORMAT,
    format_confidence,
    format_power,
    format_seconds,
    format_time,
    setup_logging,
)


@pytest.fixture
def restore_root_level():
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)


class TestSetupLogging:
    """Test cases for setup_logging."""

    def test_explicit_level(self, restore_root_level):
        with patch('speech_analyzer.logger.logging.basicConfig') as mock_config:
            root = setup_logging("warning")

        assert root.level == logging.WARNING
        assert mock_config.call_args[1]['format'] == LOG_FORMAT

    def test_verbose_forces_debug(self, restore_root_level):
        with patch('speech_analyzer.logger.logging.basicConfig'):
            root = setup_logging("ERROR", verbose=True)

        assert root.level == logging.DEBUG

    def test_level_from_environment(self, restore_root_level, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        with patch('speech_analyzer.logger.logging.basicConfig'):
            root = setup_logging()

        assert root.level == logging.ERROR

    def test_unknown_level_falls_back_to_info(self, restore_root_level):
        with patch('speech_analyzer.logger.logging.basicConfig'):
            root = setup_logging("chatty")

        assert root.level == logging.INFO


class TestFormatting:
    """Test cases for display formatting helpers."""

    def test_format_time(self):
        assert format_time(0.0) == "00:00:00.000"
        assert format_time(65.5) == "00:01:05.500"
        assert format_time(3661.123) == "01:01:01.123"

    def test_format_seconds(self):
        assert format_seconds(12.4) == "12 sec"

    def test_format_power(self):
        assert format_power(-12.3) == "-12 dBFS"
        assert format_power(-160.0) == "-160 dBFS"

    def test_format_confidence(self):
        assert format_confidence(None) == "n/a"
        assert format_confidence(0.9) == "0.90"
