"""
Error taxonomy for speech analysis.

Every error carries a user-facing ``message``; ``error_message`` resolves
one for arbitrary exceptions as well.
"""

from typing import Optional


class SpeechAnalyzerError(Exception):
    """Base class for all speech analyzer errors."""

    default_message = "Speech analyzer error."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


# Permission

class CapturePermissionError(SpeechAnalyzerError):
    default_message = "Capturing permission error."


class PermissionDenied(CapturePermissionError):
    default_message = "Capturing Permission Denied."


class UnknownPermission(CapturePermissionError):
    default_message = "Unknown Capturing Permission."


# Device

class DeviceError(SpeechAnalyzerError):
    default_message = "Audio device error."


class DeviceNotFound(DeviceError):
    default_message = "No audio input device found."


class InputNotEnabled(DeviceError):
    default_message = "Input device is not available to use."


class DeviceStartError(DeviceError):
    default_message = "Failed to start the audio input device."


# Conversion

class ConversionError(SpeechAnalyzerError):
    default_message = "Audio conversion failed."


class ConverterCreationError(ConversionError):
    default_message = "Fail to create Audio Converter."


class BufferConversionError(ConversionError):
    default_message = "Failed to convert buffer to the destination format."

    def __init__(self, detail: Optional[str] = None):
        message = self.default_message
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)


# Session

class SessionError(SpeechAnalyzerError):
    default_message = "Transcription session error."


class LocaleNotSupported(SessionError):
    default_message = "Locale selected is not supported by transcriber."


class EngineUnavailable(SessionError):
    default_message = "Transcriber is not available on the given device."


class AssetInstallError(SessionError):
    default_message = "Failed to install transcription assets."


class AudioFileError(SessionError):
    default_message = "Fail to read audio file."


class SessionEnded(SessionError):
    default_message = "Transcription session has ended and cannot be reused."


class EngineResultError(SpeechAnalyzerError):
    default_message = "The transcriber's result task failed."


# Manager

class ManagerError(SpeechAnalyzerError):
    default_message = "Transcription manager error."


class ManagerNotReady(ManagerError):
    default_message = "Failed to set up speech analyzer."


def error_message(error: BaseException) -> str:
    """Return a displayable message for any exception."""
    if isinstance(error, SpeechAnalyzerError):
        return error.message
    text = str(error)
    return text or type(error).__name__
