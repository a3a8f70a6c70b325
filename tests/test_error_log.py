"""Tests for error_log module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from audiobook_converter.error_log import (
    ErrorCategory,
    ErrorEntry,
    ErrorLog,
    ErrorLogStore,
    ErrorSeverity,
    category_for,
)
from audiobook_converter.errors import (
    BackendExhausted,
    BackendTransientFailure,
    BackendUnavailable,
    EncodeFailure,
    InputError,
    RemedyHint,
    RunCancelled,
)


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (InputError("empty"), ErrorCategory.INPUT_EMPTY),
        (BackendUnavailable("missing"), ErrorCategory.BACKEND_UNAVAILABLE),
        (BackendTransientFailure("timeout"), ErrorCategory.BACKEND_TRANSIENT),
        (BackendExhausted("none left"), ErrorCategory.BACKEND_EXHAUSTED),
        (EncodeFailure("lame crashed"), ErrorCategory.ENCODE),
        (RunCancelled("stop"), ErrorCategory.CANCELLED),
        (PermissionError("denied"), ErrorCategory.FILE_IO),
        (ValueError("odd"), ErrorCategory.UNKNOWN),
    ],
)
def test_category_for(exc: BaseException, category: ErrorCategory) -> None:
    assert category_for(exc) is category


class TestErrorEntry:
    def test_round_trip_through_dict(self) -> None:
        entry = ErrorEntry(
            category=ErrorCategory.BACKEND_TRANSIENT,
            severity=ErrorSeverity.ERROR,
            message="espeak-ng exited with status 1",
            timestamp="2026-01-01T12:00:00+00:00",
            step="synthesizing",
            unit_index=5,
            remedy="missing_backend",
            details={"stderr": "boom"},
        )
        data = entry.to_dict()
        assert data["category"] == "backend_transient"
        assert data["unit_index"] == 5
        assert ErrorEntry.from_dict(data) == entry


class TestErrorLog:
    def test_add_exception_carries_unit_and_remedy(self) -> None:
        log = ErrorLog(book_slug="book", run_id="run-1")
        try:
            raise BackendTransientFailure("espeak-ng timed out", unit_index=3, stderr="killed")
        except BackendTransientFailure as exc:
            entry = log.add_exception(exc, step="synthesizing")

        assert entry.category is ErrorCategory.BACKEND_TRANSIENT
        assert entry.severity is ErrorSeverity.ERROR
        assert entry.unit_index == 3
        assert entry.remedy == RemedyHint.MISSING_BACKEND.value
        assert entry.details == {"stderr": "killed"}
        assert entry.exception_type == "BackendTransientFailure"
        assert "espeak-ng timed out" in (entry.stack_trace or "")

    def test_cancellation_is_a_warning(self) -> None:
        log = ErrorLog(book_slug="book", run_id="run-1")
        entry = log.add_exception(RunCancelled("stop"))
        assert entry.severity is ErrorSeverity.WARNING
        assert entry.remedy == "cancelled"

    def test_plain_exception_gets_unknown_remedy(self) -> None:
        entry = ErrorLog(book_slug="book", run_id="run-1").add_exception(RuntimeError("odd"))
        assert entry.category is ErrorCategory.UNKNOWN
        assert entry.remedy == "unknown"
        assert entry.unit_index is None

    def test_to_dict_counts_errors(self) -> None:
        log = ErrorLog(book_slug="book", run_id="run-1")
        log.add_error(ErrorCategory.ENCODE, ErrorSeverity.ERROR, "flac failed")
        data = log.to_dict()
        assert data["error_count"] == 1
        assert data["errors"][0]["message"] == "flac failed"


class TestErrorLogStore:
    def test_save_and_load(self, tmp_path: Path) -> None:
        store = ErrorLogStore(tmp_path / "errors")
        log = ErrorLog(book_slug="My Book", run_id="run-1")
        log.add_exception(EncodeFailure("oggenc failed"), step="encoding")

        path = store.save(log)

        assert path == tmp_path / "errors" / "my-book.json"
        assert json.loads(path.read_text("utf-8"))["error_count"] == 1
        loaded = store.load("My Book")
        assert loaded is not None
        assert loaded.errors == log.errors
        assert not list((tmp_path / "errors").glob("*.tmp"))

    def test_corrupt_log_is_ignored(self, tmp_path: Path) -> None:
        store = ErrorLogStore(tmp_path)
        (tmp_path / "book.json").write_text("{not json", "utf-8")
        assert store.load("book") is None

    def test_get_logger_reuses_only_same_run(self, tmp_path: Path) -> None:
        store = ErrorLogStore(tmp_path)
        log = store.get_logger("book", "run-1")
        log.add_error(ErrorCategory.FILE_IO, ErrorSeverity.WARNING, "disk slow")
        store.save(log)

        assert len(store.get_logger("book", "run-1").errors) == 1
        assert store.get_logger("book", "run-2").errors == []
