"""Plain-text rendering of run results for stdout."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from ..errors import remedy_text

if TYPE_CHECKING:
    from ..pipeline import BookResult


def render_result_lines(results: Sequence[BookResult]) -> list[str]:
    """One line per book: the artifact path, or the reason and remedy."""
    lines: list[str] = []
    for result in results:
        if result.status == "ok" and result.output_path is not None:
            lines.append(str(result.output_path))
            continue
        line = f"{result.source}: {result.message}"
        if result.remedy is not None:
            line += f" ({remedy_text(result.remedy)})"
        lines.append(line)
    return lines


def exit_code_for(results: Sequence[BookResult]) -> int:
    return 0 if all(result.status == "ok" for result in results) else 1
