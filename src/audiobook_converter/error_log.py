"""Structured per-book error logs.

Each book gets one JSON document under the configured errors directory,
holding every failure recorded during a run together with the unit index,
the remedy hint and the exception chain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import json
import logging
from pathlib import Path
from typing import Any
import traceback

from .errors import (
    BackendExhausted,
    BackendTransientFailure,
    BackendUnavailable,
    ConversionError,
    EncodeFailure,
    InputError,
    RemedyHint,
    RunCancelled,
)
from .utils import ensure_dir, slugify

_LOGGER = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for structured classification."""

    # Input
    EPUB_PARSING = "epub_parsing"
    INPUT_EMPTY = "input_empty"

    # Speech synthesis
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_EXHAUSTED = "backend_exhausted"

    # Output
    ENCODE = "encode"

    # Run control and system
    CANCELLED = "cancelled"
    FILE_IO = "file_io"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def category_for(exc: BaseException) -> ErrorCategory:
    """Map an exception onto the error category recorded in the log."""
    if isinstance(exc, InputError):
        return ErrorCategory.INPUT_EMPTY
    if isinstance(exc, BackendExhausted):
        return ErrorCategory.BACKEND_EXHAUSTED
    if isinstance(exc, BackendUnavailable):
        return ErrorCategory.BACKEND_UNAVAILABLE
    if isinstance(exc, BackendTransientFailure):
        return ErrorCategory.BACKEND_TRANSIENT
    if isinstance(exc, EncodeFailure):
        return ErrorCategory.ENCODE
    if isinstance(exc, RunCancelled):
        return ErrorCategory.CANCELLED
    if isinstance(exc, OSError):
        return ErrorCategory.FILE_IO
    return ErrorCategory.UNKNOWN


@dataclass(frozen=True)
class ErrorEntry:
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    timestamp: str
    step: str | None = None
    unit_index: int | None = None
    remedy: str | None = None
    details: dict[str, Any] | None = None
    exception_type: str | None = None
    exception_message: str | None = None
    stack_trace: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "category": self.category.value,
            "severity": self.severity.value,
            "step": self.step,
            "unit_index": self.unit_index,
            "remedy": self.remedy,
            "message": self.message,
            "details": self.details,
            "exception_type": self.exception_type,
            "exception_message": self.exception_message,
            "stack_trace": self.stack_trace,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ErrorEntry":
        return cls(
            category=ErrorCategory(data["category"]),
            severity=ErrorSeverity(data["severity"]),
            message=data["message"],
            timestamp=data["timestamp"],
            step=data.get("step"),
            unit_index=data.get("unit_index"),
            remedy=data.get("remedy"),
            details=data.get("details"),
            exception_type=data.get("exception_type"),
            exception_message=data.get("exception_message"),
            stack_trace=data.get("stack_trace"),
        )


@dataclass
class ErrorLog:
    """Structured error log for a single book."""

    book_slug: str
    run_id: str
    errors: list[ErrorEntry] = field(default_factory=list)

    def add_error(
        self,
        category: ErrorCategory,
        severity: ErrorSeverity,
        message: str,
        *,
        step: str | None = None,
        unit_index: int | None = None,
        remedy: RemedyHint | None = None,
        details: dict[str, Any] | None = None,
        exc: BaseException | None = None,
    ) -> ErrorEntry:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        exception_type = None
        exception_message = None
        stack_trace = None

        if exc is not None:
            exception_type = type(exc).__name__
            exception_message = str(exc)
            stack_trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).strip()

        entry = ErrorEntry(
            category=category,
            severity=severity,
            message=message,
            timestamp=timestamp,
            step=step,
            unit_index=unit_index,
            remedy=remedy.value if remedy is not None else None,
            details=details,
            exception_type=exception_type,
            exception_message=exception_message,
            stack_trace=stack_trace,
        )
        self.errors.append(entry)
        return entry

    def add_exception(self, exc: BaseException, *, step: str | None = None) -> ErrorEntry:
        """Record ``exc`` with the category, unit index and remedy it carries."""
        unit_index = exc.unit_index if isinstance(exc, ConversionError) else None
        remedy = exc.remedy if isinstance(exc, ConversionError) else RemedyHint.UNKNOWN
        severity = ErrorSeverity.WARNING if isinstance(exc, RunCancelled) else ErrorSeverity.ERROR
        details = None
        if isinstance(exc, BackendTransientFailure) and exc.stderr:
            details = {"stderr": exc.stderr}
        return self.add_error(
            category_for(exc),
            severity,
            str(exc),
            step=step,
            unit_index=unit_index,
            remedy=remedy,
            details=details,
            exc=exc,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "book_slug": self.book_slug,
            "run_id": self.run_id,
            "error_count": len(self.errors),
            "errors": [entry.to_dict() for entry in self.errors],
        }


class ErrorLogStore:
    """Persistent storage for structured error logs."""

    def __init__(self, root: Path) -> None:
        self.root = ensure_dir(root)

    def load(self, book_slug: str) -> ErrorLog | None:
        path = self._path_for(book_slug)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text("utf-8"))
            return ErrorLog(
                book_slug=data["book_slug"],
                run_id=data["run_id"],
                errors=[ErrorEntry.from_dict(item) for item in data.get("errors", [])],
            )
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as exc:
            # A corrupt log must not fail the run.
            _LOGGER.warning("Ignoring unreadable error log %s: %s", path, exc)
            return None

    def save(self, log: ErrorLog) -> Path:
        path = self._path_for(log.book_slug)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(log.to_dict(), indent=2, ensure_ascii=True), "utf-8")
        tmp_path.replace(path)
        return path

    def _path_for(self, book_slug: str) -> Path:
        return self.root / f"{slugify(book_slug)}.json"

    def get_logger(self, book_slug: str, run_id: str) -> ErrorLog:
        """Return the log for ``book_slug``, reusing it only within the same run."""
        existing = self.load(book_slug)
        if existing is not None and existing.run_id == run_id:
            return existing
        return ErrorLog(book_slug=book_slug, run_id=run_id)
