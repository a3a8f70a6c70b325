"""Quiet progress display for the converter CLI.

Progress lines go to stderr without timestamps so they stay readable next
to the log output. Example::

    Processing: The Great Gatsby
      [12/120] 10%
      [24/120] 20%
      ...
    Completed: The Great Gatsby (00:45)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Sequence, TextIO

from ..errors import remedy_text
from ..interfaces import ProgressSink

if TYPE_CHECKING:
    from ..pipeline import BookResult


def _format_duration(seconds: float) -> str:
    """Format seconds as MM:SS."""
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{mins:02d}:{secs:02d}"


def _truncate_title(title: str, max_len: int = 40) -> str:
    if len(title) <= max_len:
        return title
    return title[: max_len - 3] + "..."


@dataclass
class BookProgress(ProgressSink):
    """Progress sink for one book; prints at every ``step_percent`` boundary."""

    title: str
    stream: TextIO
    step_percent: int = 10
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None
    completed: int = 0
    total: int = 0
    _last_bucket: int = -1

    @property
    def duration(self) -> timedelta:
        end = self.end_time or datetime.now()
        return end - self.start_time

    def on_progress(self, completed: int, total: int) -> None:
        self.completed = completed
        self.total = total
        if total <= 0:
            return
        percent = int(completed * 100 / total)
        bucket = percent // self.step_percent
        if bucket == self._last_bucket and completed != total:
            return
        self._last_bucket = bucket
        print(f"  [{completed}/{total}] {percent}%", file=self.stream)

    def on_done(self, artifact_path: Path) -> None:
        self.end_time = datetime.now()
        title = _truncate_title(self.title)
        print(f"Completed: {title} ({_format_duration(self.duration.total_seconds())})", file=self.stream)
        print(f"  -> {artifact_path}", file=self.stream)
        print("", file=self.stream)

    def on_failed(self, reason: str) -> None:
        self.end_time = datetime.now()
        print(f"Failed: {_truncate_title(self.title)}", file=self.stream)
        print(f"  Error: {reason}", file=self.stream)
        print("", file=self.stream)


@dataclass
class ProgressDisplay:
    """Calm, minimal progress output for the CLI."""

    stream: TextIO = field(default_factory=lambda: sys.stderr)
    books: list[BookProgress] = field(default_factory=list)

    def print(self, message: str) -> None:
        print(message, file=self.stream)

    def for_book(self, title: str) -> BookProgress:
        self.print(f"Processing: {_truncate_title(title)}")
        progress = BookProgress(title=title, stream=self.stream)
        self.books.append(progress)
        return progress

    def print_summary(self, results: Sequence[BookResult]) -> None:
        if not results:
            self.print("No books processed.")
            return

        counts: dict[str, int] = {}
        for result in results:
            counts[result.status] = counts.get(result.status, 0) + 1

        self.print("Summary:")
        for status in ["ok", "failed", "missing", "cancelled"]:
            if count := counts.get(status):
                self.print(f"  {status}: {count}")
        self.print("")

        for result in results:
            line = f"  - {result.book_slug}: {result.status}"
            if result.output_path is not None:
                line += f" -> {result.output_path}"
            self.print(line)
            if result.status != "ok":
                self.print(f"      reason: {result.message}")
                if result.remedy is not None:
                    self.print(f"      remedy: {remedy_text(result.remedy)}")
