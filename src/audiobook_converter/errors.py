"""Error taxonomy shared by the synthesis and encoding stages."""

from __future__ import annotations

from enum import Enum


class RemedyHint(Enum):
    """What the user can do about a failed run."""

    MISSING_BACKEND = "missing_backend"
    INVALID_INPUT = "invalid_input"
    ENCODE_FAILURE = "encode_failure"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ConversionError(RuntimeError):
    """Base class for conversion failures."""

    remedy: RemedyHint = RemedyHint.UNKNOWN

    def __init__(self, message: str, *, unit_index: int | None = None) -> None:
        super().__init__(message)
        self.unit_index = unit_index


class InputError(ConversionError):
    """Raised when source text is unreadable, empty or non-speech."""

    remedy = RemedyHint.INVALID_INPUT


class BackendUnavailable(ConversionError):
    """Raised when a synthesis or encoder backend cannot be invoked at all."""

    remedy = RemedyHint.MISSING_BACKEND


class BackendTransientFailure(ConversionError):
    """Raised for a timeout, non-zero exit or malformed output on one call."""

    remedy = RemedyHint.MISSING_BACKEND

    def __init__(self, message: str, *, unit_index: int | None = None, stderr: str = "") -> None:
        super().__init__(message, unit_index=unit_index)
        self.stderr = stderr


class BackendExhausted(ConversionError):
    """Raised when every synthesis backend has been demoted."""

    remedy = RemedyHint.MISSING_BACKEND


class EncodeFailure(ConversionError):
    """Raised when the encoder backend exits with an error."""

    remedy = RemedyHint.ENCODE_FAILURE


class RunCancelled(ConversionError):
    """Raised when a run is cancelled between unit dispatches."""

    remedy = RemedyHint.CANCELLED


def remedy_text(remedy: RemedyHint) -> str:
    return _REMEDY_TEXT.get(remedy, _REMEDY_TEXT[RemedyHint.UNKNOWN])


_REMEDY_TEXT = {
    RemedyHint.MISSING_BACKEND: "Install a speech engine (espeak-ng, espeak or festival) "
    "and the encoder for the chosen format, then run `epub-audiobook-converter doctor`.",
    RemedyHint.INVALID_INPUT: "Check that the input is a readable EPUB with text content.",
    RemedyHint.ENCODE_FAILURE: "Check the encoder diagnostics above or pick another output format.",
    RemedyHint.CANCELLED: "The run was cancelled; start it again to resume from the cache.",
    RemedyHint.UNKNOWN: "See the run log for details.",
}
