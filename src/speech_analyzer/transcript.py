"""
Transcript deltas and their accumulation.

Volatile deltas are provisional and replace each other; final deltas are
appended for good and clear whatever volatile text is pending.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TranscriptDelta:
    """One recognition result."""

    text: str
    is_final: bool = False
    confidence: Optional[float] = None
    start: Optional[float] = None
    end: Optional[float] = None

    @property
    def is_volatile(self) -> bool:
        return not self.is_final


@dataclass
class Transcript:
    finalized: str = ""
    volatile: str = ""
    confidence: Optional[float] = None

    def apply(self, delta: TranscriptDelta):
        if not delta.is_final:
            self.volatile = delta.text
            return

        text = delta.text.strip()
        if text:
            self.finalized = f"{self.finalized} {text}" if self.finalized else text
        # keep the previous confidence unless a newer one is supplied
        if delta.confidence is not None:
            self.confidence = delta.confidence
        self.volatile = ""

    def reset(self):
        self.finalized = ""
        self.volatile = ""
        self.confidence = None

    @property
    def text(self) -> str:
        """Finalized text followed by pending volatile text."""
        if self.finalized and self.volatile:
            return f"{self.finalized} {self.volatile}"
        return self.finalized or self.volatile
