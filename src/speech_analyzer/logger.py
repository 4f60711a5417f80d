"""
Logging setup and display formatting helpers.
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Optional[str] = None, verbose: bool = False) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Level name. Defaults to the LOG_LEVEL environment variable or INFO.
        verbose: Force DEBUG regardless of `level`.

    Returns:
        The root logger.
    """
    if verbose:
        level = "DEBUG"
    elif level is None:
        level = os.getenv("LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format=LOG_FORMAT, stream=sys.stderr)

    root = logging.getLogger()
    root.setLevel(log_level)
    return root


def format_time(seconds: float) -> str:
    """Format time in HH:MM:SS.ms format."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    seconds = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:06.3f}"


def format_seconds(seconds: float) -> str:
    return f"{seconds:.0f} sec"


def format_power(decibels: float) -> str:
    """Level in dBFS, e.g. '-12 dBFS'."""
    return f"{decibels:.0f} dBFS"


def format_confidence(confidence: Optional[float]) -> str:
    if confidence is None:
        return "n/a"
    return f"{confidence:.2f}"
