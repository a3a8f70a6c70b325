"""Pipeline orchestration: chapters -> units -> PCM -> one encoded audiobook."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
import json
import logging
import os
from pathlib import Path
import threading
import time
from typing import Any, Callable, Iterable, Sequence

from .audio_cache import build_audio_cache
from .audio_encoder import OutputFormat, build_encoder, pcm_duration_ms, silence_pcm
from .config import Config
from .epub_reader import EbooklibEpubReader
from .error_log import ErrorCategory, ErrorLog, ErrorSeverity
from .errors import ConversionError, EncodeFailure, InputError, RemedyHint, RunCancelled, remedy_text
from .interfaces import (
    AudioCache,
    AudioEncoder,
    Chapter,
    EngineStats,
    EpubReader,
    ProgressSink,
    SynthesisParams,
    SynthesisUnit,
    TextCleaner,
    TextSegmenter,
    UnitTag,
)
from .logging_setup import LoggingContext
from .text_cleaner import BasicTextCleaner
from .text_segmenter import BasicTextSegmenter
from .tts_factory import EngineChain, base_params, build_engines
from .tts_pipeline import SchedulerSettings, SynthesisScheduler, collect_buffers
from .utils import ensure_dir, slugify

_LOGGER = logging.getLogger(__name__)

MANIFEST_VERSION = 1


class RunState(Enum):
    IDLE = "idle"
    SEGMENTING = "segmenting"
    CACHE_RESOLVING = "cache_resolving"
    SYNTHESIZING = "synthesizing"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.DONE, RunState.FAILED)


_FORWARD_ORDER = (
    RunState.IDLE,
    RunState.SEGMENTING,
    RunState.CACHE_RESOLVING,
    RunState.SYNTHESIZING,
    RunState.ENCODING,
    RunState.DONE,
)


@dataclass
class PipelineRun:
    """Mutable state of one conversion, owned by its controller."""

    units: list[SynthesisUnit] = field(default_factory=list)
    buffers: list[bytes] = field(default_factory=list)
    state: RunState = RunState.IDLE
    reason: str | None = None
    failed_at: RunState | None = None
    error: ConversionError | None = None
    engine: str | None = None
    engine_health: list[EngineStats] = field(default_factory=list)
    chapter_units: list[int] = field(default_factory=list)

    def advance(self, state: RunState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"Run already finished in state {self.state.value}.")
        if state is RunState.FAILED or state not in _FORWARD_ORDER:
            raise RuntimeError(f"Use fail() to move a run to {state.value}.")
        if _FORWARD_ORDER.index(state) <= _FORWARD_ORDER.index(self.state):
            raise RuntimeError(f"Illegal transition {self.state.value} -> {state.value}.")
        self.state = state

    def fail(self, reason: str, error: ConversionError | None = None) -> None:
        if self.state.terminal:
            raise RuntimeError(f"Run already finished in state {self.state.value}.")
        self.failed_at = self.state
        self.state = RunState.FAILED
        self.reason = reason
        self.error = error
        # Partial audio is never kept.
        self.buffers = []


@dataclass(frozen=True)
class RunResult:
    status: RunState
    artifact_path: Path | None = None
    reason: str | None = None
    remedy: RemedyHint | None = None
    unit_index: int | None = None
    engine: str | None = None
    engine_health: tuple[EngineStats, ...] = ()
    unit_count: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status is RunState.DONE


@dataclass(frozen=True)
class ControllerSettings:
    params: SynthesisParams
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    quality: float = 0.7
    paragraph_silence_ms: int = 250
    chapter_silence_ms: int = 1000


class ConversionController:
    """Run one book through segmentation, synthesis and encoding.

    A controller owns a single ``PipelineRun``; build a new controller for
    every conversion. The cache may be shared between controllers.
    """

    def __init__(
        self,
        chain: EngineChain,
        cache: AudioCache,
        encoder: AudioEncoder,
        settings: ControllerSettings,
        *,
        segmenter: TextSegmenter | None = None,
        progress: ProgressSink | None = None,
        logger: logging.Logger | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self._chain = chain
        self._cache = cache
        self._encoder = encoder
        self._settings = settings
        self._segmenter = segmenter or BasicTextSegmenter()
        self._progress = progress
        self._logger = logger or _LOGGER
        self._sleep = sleep_fn
        self._cancel = threading.Event()
        self.run = PipelineRun()

    def cancel(self) -> None:
        self._logger.info("Cancellation requested")
        self._cancel.set()

    def convert(self, chapters: Sequence[Chapter], out_path: Path) -> RunResult:
        run = self.run
        scheduler: SynthesisScheduler | None = None
        try:
            run.advance(RunState.SEGMENTING)
            run.units, run.chapter_units = segment_chapters(chapters, self._segmenter)
            if not run.units:
                raise InputError("No speakable text to convert.")
            self._logger.info("Segmented %d chapter(s) into %d unit(s)", len(chapters), len(run.units))

            run.advance(RunState.CACHE_RESOLVING)
            self._check_cancelled()
            engine = self._chain.activate(self._settings.params)
            run.engine = engine.name
            scheduler = SynthesisScheduler(
                self._chain,
                self._cache,
                self._settings.scheduler,
                logger=self._logger,
                sleep_fn=self._sleep,
                cancel_event=self._cancel,
            )
            slots: list[bytes | None] = [None] * len(run.units)
            pending = scheduler.resolve_cached(run.units, self._settings.params, slots, self._on_progress)

            run.advance(RunState.SYNTHESIZING)
            scheduler.synthesize_pending(run.units, self._settings.params, pending, slots, self._on_progress)
            run.buffers = collect_buffers(run.units, slots)
            run.engine = self._chain.active.name
            run.engine_health = scheduler.health.snapshot()

            run.advance(RunState.ENCODING)
            self._check_cancelled()
            params = replace(self._settings.params, engine=run.engine)
            paced = self._with_pacing(run.units, run.buffers, params)
            artifact = self._write_artifact(paced, out_path, params)
            duration_ms = pcm_duration_ms(paced, params)
            run.advance(RunState.DONE)
        except KeyboardInterrupt:
            self._cancel.set()
            return self._failed(RunCancelled("Interrupted by user."), scheduler)
        except ConversionError as exc:
            return self._failed(exc, scheduler)
        except Exception as exc:
            self._logger.debug("Unexpected error during %s", run.state.value, exc_info=True)
            return self._failed(_wrap_unexpected(exc, run.state), scheduler)

        self._logger.info("Wrote %s (%d ms of audio)", artifact, duration_ms)
        if self._progress is not None:
            self._progress.on_done(artifact)
        return RunResult(
            status=RunState.DONE,
            artifact_path=artifact,
            engine=run.engine,
            engine_health=tuple(run.engine_health),
            unit_count=len(run.units),
            duration_ms=duration_ms,
        )

    def _failed(self, exc: ConversionError, scheduler: SynthesisScheduler | None) -> RunResult:
        run = self.run
        if scheduler is not None:
            run.engine_health = scheduler.health.snapshot()
        run.fail(str(exc), exc)
        self._logger.error("Conversion failed during %s: %s", run.failed_at.value if run.failed_at else "run", exc)
        if self._progress is not None:
            self._progress.on_failed(str(exc))
        return RunResult(
            status=RunState.FAILED,
            reason=str(exc),
            remedy=exc.remedy,
            unit_index=exc.unit_index,
            engine=run.engine,
            engine_health=tuple(run.engine_health),
            unit_count=len(run.units),
        )

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise RunCancelled("Run cancelled.")

    def _on_progress(self, completed: int, total: int) -> None:
        if self._progress is not None:
            self._progress.on_progress(completed, total)

    def _with_pacing(
        self,
        units: Sequence[SynthesisUnit],
        buffers: Sequence[bytes],
        params: SynthesisParams,
    ) -> list[bytes]:
        paragraph = silence_pcm(self._settings.paragraph_silence_ms, params)
        chapter = silence_pcm(self._settings.chapter_silence_ms, params)
        paced: list[bytes] = []
        last = len(units) - 1
        for position, (unit, data) in enumerate(zip(units, buffers)):
            paced.append(data)
            if position == last:
                break
            if unit.tag is UnitTag.CHAPTER_END and chapter:
                paced.append(chapter)
            elif unit.tag is UnitTag.PARAGRAPH_END and paragraph:
                paced.append(paragraph)
        return paced

    def _write_artifact(self, buffers: Sequence[bytes], out_path: Path, params: SynthesisParams) -> Path:
        ensure_dir(out_path.parent)
        partial = out_path.with_name(f".{out_path.stem}.partial{out_path.suffix}")
        try:
            self._encoder.encode(buffers, partial, self._settings.quality, params)
            os.replace(partial, out_path)
        except OSError as exc:
            raise EncodeFailure(f"Failed to write {out_path}: {exc}") from exc
        finally:
            partial.unlink(missing_ok=True)
        return out_path


def _wrap_unexpected(exc: Exception, state: RunState) -> ConversionError:
    if state is RunState.ENCODING:
        wrapped: ConversionError = EncodeFailure(f"Encoding failed: {exc}")
    else:
        wrapped = ConversionError(f"Unexpected error while {state.value}: {exc}")
    wrapped.__cause__ = exc
    return wrapped


def segment_chapters(
    chapters: Sequence[Chapter],
    segmenter: TextSegmenter,
) -> tuple[list[SynthesisUnit], list[int]]:
    """Segment every chapter with contiguous indices; tag each chapter's last unit."""
    units: list[SynthesisUnit] = []
    per_chapter: list[int] = []
    for chapter in chapters:
        chapter_units = list(segmenter.segment(chapter.text, start_index=len(units)))
        if chapter_units:
            chapter_units[-1] = replace(chapter_units[-1], tag=UnitTag.CHAPTER_END)
        units.extend(chapter_units)
        per_chapter.append(len(chapter_units))
    return units, per_chapter


@dataclass(frozen=True)
class BookResult:
    source: Path
    book_slug: str
    status: str  # "ok", "failed", "missing", "cancelled"
    message: str
    output_path: Path | None = None
    manifest_path: Path | None = None
    remedy: RemedyHint | None = None


ProgressFactory = Callable[[str], ProgressSink]


def run_pipeline(
    log_ctx: LoggingContext,
    inputs: Sequence[Path],
    config: Config,
    progress: ProgressFactory | None = None,
    *,
    reader: EpubReader | None = None,
    cleaner: TextCleaner | None = None,
    cache: AudioCache | None = None,
    encoder: AudioEncoder | None = None,
    chain_factory: Callable[[logging.Logger], EngineChain] | None = None,
) -> list[BookResult]:
    """Convert every input book; ``progress`` builds a sink from the book title."""
    results: list[BookResult] = []
    reader = reader or EbooklibEpubReader()
    cleaner = cleaner or BasicTextCleaner(
        remove_citations=config.text.remove_citations,
        aggressive=config.text.aggressive,
    )
    segmenter = BasicTextSegmenter(max_chars=config.tts.max_chars, min_chars=config.tts.min_chars)
    if cache is None:
        cache = build_audio_cache(
            config.cache.enabled,
            persistent=config.cache.persistent,
            root=config.paths.cache,
            max_entries=config.cache.max_entries,
            max_bytes=config.cache.max_bytes,
        )
    output_format = OutputFormat.parse(config.output.format)
    encoder = encoder or build_encoder(output_format, logger=log_ctx.logger)
    engines = build_engines(config)
    settings = _controller_settings(config)

    for source in _expand_inputs(inputs):
        book_slug = slugify(source.stem if source.suffix else source.name)
        book_logger = log_ctx.get_book_logger(book_slug)
        error_log = log_ctx.error_log_store.get_logger(book_slug, log_ctx.run_id)
        if not source.exists():
            message = f"Input not found: {source}"
            book_logger.warning(message)
            results.append(
                BookResult(
                    source=source,
                    book_slug=book_slug,
                    status="missing",
                    message=message,
                    remedy=RemedyHint.INVALID_INPUT,
                )
            )
            continue

        try:
            book = reader.read(source)
        except InputError as exc:
            book_logger.error("Failed to read EPUB: %s", exc)
            error_log.add_error(
                ErrorCategory.EPUB_PARSING,
                ErrorSeverity.ERROR,
                str(exc),
                step="read",
                remedy=exc.remedy,
                exc=exc,
            )
            _save_error_log(log_ctx, error_log, book_logger)
            results.append(_failed_book(source, book_slug, exc))
            continue

        book_logger.info("Processing %s with %d chapter(s)", book.metadata.title, len(book.chapters))
        chapters = _clean_chapters(book.chapters, cleaner, book_logger)
        out_path = resolve_output_path(config.paths.out, book_slug, output_format)

        if chain_factory is not None:
            chain = chain_factory(book_logger)
        else:
            chain = EngineChain(engines, book_logger)
        controller = ConversionController(
            chain,
            cache,
            encoder,
            settings,
            segmenter=segmenter,
            progress=progress(book.metadata.title) if progress is not None else None,
            logger=book_logger,
        )
        result = controller.convert(chapters, out_path)
        _record_engine_health(error_log, result)

        if not result.ok:
            error = controller.run.error
            if error is not None:
                failed_at = controller.run.failed_at
                error_log.add_exception(error, step=failed_at.value if failed_at else None)
            _save_error_log(log_ctx, error_log, book_logger)
            status = "cancelled" if result.remedy is RemedyHint.CANCELLED else "failed"
            results.append(
                BookResult(
                    source=source,
                    book_slug=book_slug,
                    status=status,
                    message=result.reason or "Conversion failed.",
                    remedy=result.remedy,
                )
            )
            if status == "cancelled":
                break
            continue

        manifest_path = write_manifest(
            out_path.with_suffix(".json"),
            book_title=book.metadata.title,
            author=book.metadata.author,
            language=book.metadata.language,
            source=source,
            chapters=chapters,
            chapter_units=controller.run.chapter_units,
            result=result,
            config=config,
            run_id=log_ctx.run_id,
        )
        if error_log.errors:
            _save_error_log(log_ctx, error_log, book_logger)
        results.append(
            BookResult(
                source=source,
                book_slug=book_slug,
                status="ok",
                message=f"Converted {len(chapters)} chapter(s), {result.unit_count} unit(s).",
                output_path=result.artifact_path,
                manifest_path=manifest_path,
            )
        )

    return results


def resolve_inputs(inputs: Iterable[Path]) -> list[Path]:
    resolved: list[Path] = []
    for path in inputs:
        expanded = path.expanduser()
        try:
            resolved.append(expanded.resolve())
        except FileNotFoundError:
            resolved.append(expanded)
    return resolved


def resolve_output_path(out_root: Path, book_slug: str, output_format: OutputFormat) -> Path:
    return out_root / book_slug / f"{book_slug}.{output_format.extension}"


def write_manifest(
    path: Path,
    *,
    book_title: str,
    author: str | None,
    language: str | None,
    source: Path,
    chapters: Sequence[Chapter],
    chapter_units: Sequence[int],
    result: RunResult,
    config: Config,
    run_id: str,
) -> Path:
    """Write the JSON description of a finished audiobook next to it."""
    payload: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "title": book_title,
        "author": author,
        "language": language,
        "source": str(source),
        "artifact": result.artifact_path.name if result.artifact_path else None,
        "run_id": run_id,
        "created_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "duration_ms": result.duration_ms,
        "unit_count": result.unit_count,
        "chapters": [
            {"index": chapter.index, "title": chapter.title, "units": units}
            for chapter, units in zip(chapters, chapter_units)
        ],
        "engine": result.engine,
        "engine_health": [
            {"name": stats.name, "successes": stats.successes, "failures": stats.failures}
            for stats in result.engine_health
        ],
        "output": {"format": config.output.format, "quality": config.output.quality},
        "tts": {
            "voice": config.tts.voice,
            "speed": config.tts.speed,
            "pitch": config.tts.pitch,
            "sample_rate": config.tts.sample_rate,
            "channels": config.tts.channels,
            "max_chars": config.tts.max_chars,
        },
    }
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), "utf-8")
    tmp_path.replace(path)
    return path


def _controller_settings(config: Config) -> ControllerSettings:
    # The engine field is replaced by whichever engine is active at run time.
    first_engine = config.tts.engines[0] if config.tts.engines else ""
    return ControllerSettings(
        params=base_params(config, first_engine),
        scheduler=SchedulerSettings(
            workers=config.tts.workers,
            max_attempts=config.tts.max_attempts,
            backoff_base=config.tts.backoff_base,
            backoff_jitter=config.tts.backoff_jitter,
        ),
        quality=config.output.quality,
        paragraph_silence_ms=config.audio.paragraph_silence_ms,
        chapter_silence_ms=config.audio.chapter_silence_ms,
    )


def _clean_chapters(chapters: Sequence[Chapter], cleaner: TextCleaner, logger: logging.Logger) -> list[Chapter]:
    cleaned: list[Chapter] = []
    for chapter in chapters:
        text = cleaner.clean(chapter.text)
        if not text:
            logger.warning("Chapter %d (%s) is empty after cleaning; skipping.", chapter.index, chapter.title)
            continue
        cleaned.append(replace(chapter, text=text))
    return cleaned


def _expand_inputs(inputs: Sequence[Path]) -> list[Path]:
    expanded: list[Path] = []
    for path in inputs:
        if path.is_dir():
            expanded.extend(sorted(path.glob("*.epub")))
        else:
            expanded.append(path)
    return expanded


def _failed_book(source: Path, book_slug: str, exc: ConversionError) -> BookResult:
    return BookResult(
        source=source,
        book_slug=book_slug,
        status="failed",
        message=str(exc),
        remedy=exc.remedy,
    )


def _record_engine_health(error_log: ErrorLog, result: RunResult) -> None:
    degraded = [stats for stats in result.engine_health if stats.failures]
    if not degraded:
        return
    error_log.add_error(
        ErrorCategory.BACKEND_TRANSIENT,
        ErrorSeverity.WARNING,
        "Synthesis backend failures during run: "
        + ", ".join(f"{stats.name} ({stats.failures} failed)" for stats in degraded),
        step=RunState.SYNTHESIZING.value,
        details={
            stats.name: {"successes": stats.successes, "failures": stats.failures}
            for stats in result.engine_health
        },
    )


def _save_error_log(log_ctx: LoggingContext, error_log: ErrorLog, logger: logging.Logger) -> None:
    try:
        path = log_ctx.error_log_store.save(error_log)
    except OSError as exc:
        logger.warning("Error log save failed: %s", exc)
        return
    logger.info("Error details written to %s", path)


def describe_failure(result: BookResult) -> str:
    """One-line reason plus remedy for a failed book."""
    if result.remedy is None:
        return result.message
    return f"{result.message} Remedy: {remedy_text(result.remedy)}"
