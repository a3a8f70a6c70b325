"""Parallel unit synthesis with caching, dedup, retry and engine fallback."""

from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
import logging
import threading
import time
from typing import Callable, Sequence

from .audio_cache import fingerprint
from .errors import (
    BackendExhausted,
    BackendTransientFailure,
    BackendUnavailable,
    ConversionError,
    InputError,
    RunCancelled,
)
from .interfaces import AudioCache, EngineStats, SynthesisParams, SynthesisUnit, TtsEngine
from .tts_factory import EngineChain
from .utils import default_worker_count

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class SchedulerSettings:
    workers: int = 0
    max_attempts: int = 2
    backoff_base: float = 0.5
    backoff_jitter: float = 0.1

    @property
    def resolved_workers(self) -> int:
        return self.workers if self.workers > 0 else default_worker_count()


class EngineHealth:
    """Per-engine success/failure tally for one run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, list[int]] = {}

    def record_success(self, engine: str) -> None:
        with self._lock:
            self._counts.setdefault(engine, [0, 0])[0] += 1

    def record_failure(self, engine: str) -> None:
        with self._lock:
            self._counts.setdefault(engine, [0, 0])[1] += 1

    def successes(self, engine: str) -> int:
        with self._lock:
            return self._counts.get(engine, [0, 0])[0]

    def failures(self, engine: str) -> int:
        with self._lock:
            return self._counts.get(engine, [0, 0])[1]

    def total_successes(self) -> int:
        with self._lock:
            return sum(counts[0] for counts in self._counts.values())

    def snapshot(self) -> list[EngineStats]:
        with self._lock:
            return [
                EngineStats(name=name, successes=counts[0], failures=counts[1])
                for name, counts in self._counts.items()
            ]


class SynthesisScheduler:
    """Turn ordered units into ordered PCM buffers.

    Cache hits resolve immediately. Misses are grouped by fingerprint so
    repeated text is synthesized once, then the unique fingerprints are
    handed to a fixed-size thread pool. Each buffer slot is owned by exactly
    one group, and the result list is read by index, so completion order
    never leaks into the output.
    """

    def __init__(
        self,
        chain: EngineChain,
        cache: AudioCache,
        settings: SchedulerSettings,
        *,
        logger: logging.Logger | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._chain = chain
        self._cache = cache
        self._settings = settings
        self._logger = logger or _LOGGER
        self._sleep = sleep_fn
        self._cancel = cancel_event or threading.Event()
        self._progress_lock = threading.Lock()
        self._completed = 0
        self.health = EngineHealth()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def resolve_cached(
        self,
        units: Sequence[SynthesisUnit],
        params: SynthesisParams,
        buffers: list[bytes | None],
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, list[int]]:
        """Fill cache hits into ``buffers`` and group the misses by fingerprint."""
        total = len(units)
        active_params = replace(params, engine=self._chain.active.name)
        pending: dict[str, list[int]] = {}
        for position, unit in enumerate(units):
            key = fingerprint(unit.text, active_params)
            data = self._cache.get(key)
            if data is not None:
                buffers[position] = data
                self._tick(total, on_progress)
                continue
            pending.setdefault(key, []).append(position)

        misses = sum(len(positions) for positions in pending.values())
        self._logger.info(
            "Cache resolved %d of %d unit(s); %d unique unit(s) to synthesize",
            total - misses,
            total,
            len(pending),
        )
        return pending

    def synthesize_pending(
        self,
        units: Sequence[SynthesisUnit],
        params: SynthesisParams,
        pending: dict[str, list[int]],
        buffers: list[bytes | None],
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if not pending:
            return
        total = len(units)
        workers = min(self._settings.resolved_workers, len(pending))
        self._logger.debug("Dispatching %d unique unit(s) to %d worker(s)", len(pending), workers)

        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="synth")
        try:
            futures: list[Future[None]] = [
                pool.submit(self._resolve_group, units, params, positions, buffers, total, on_progress)
                for positions in pending.values()
            ]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            failed = next((future for future in done if future.exception() is not None), None)
            if failed is not None:
                raise failed.exception()  # type: ignore[misc]
        except BaseException:
            # Stop queued jobs; in-flight calls end within their timeout.
            self._cancel.set()
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)

    def run(
        self,
        units: Sequence[SynthesisUnit],
        params: SynthesisParams,
        on_progress: ProgressCallback | None = None,
    ) -> list[bytes]:
        ordered = _ordered_units(units)
        buffers: list[bytes | None] = [None] * len(ordered)
        pending = self.resolve_cached(ordered, params, buffers, on_progress)
        self.synthesize_pending(ordered, params, pending, buffers, on_progress)
        return collect_buffers(ordered, buffers)

    def _resolve_group(
        self,
        units: Sequence[SynthesisUnit],
        params: SynthesisParams,
        positions: list[int],
        buffers: list[bytes | None],
        total: int,
        on_progress: ProgressCallback | None,
    ) -> None:
        first = units[positions[0]]
        if self.cancelled:
            raise RunCancelled("Run cancelled before all units were dispatched.", unit_index=first.index)
        data = self._synthesize_unit(first, params)
        for position in positions:
            buffers[position] = data
            self._tick(total, on_progress)

    def _synthesize_unit(self, unit: SynthesisUnit, params: SynthesisParams) -> bytes:
        while True:
            try:
                engine = self._chain.active
            except BackendExhausted as exc:
                raise BackendExhausted(str(exc), unit_index=unit.index) from exc
            engine_params = replace(params, engine=engine.name)
            key = fingerprint(unit.text, engine_params)
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            last_error = self._attempt(engine, unit, engine_params)
            if isinstance(last_error, bytes):
                return self._store(key, last_error)

            try:
                self._chain.demote(engine)
            except BackendExhausted as exc:
                if self.health.total_successes() == 0:
                    message = f"No usable synthesis backend: {last_error}"
                else:
                    message = f"Unit {unit.index} failed on every synthesis backend: {last_error}"
                raise BackendExhausted(message, unit_index=unit.index) from (last_error or exc)
            self._logger.info("Retrying unit %d on engine %s", unit.index, self._chain.active.name)

    def _attempt(
        self,
        engine: TtsEngine,
        unit: SynthesisUnit,
        params: SynthesisParams,
    ) -> bytes | ConversionError | None:
        last_error: ConversionError | None = None
        for attempt in range(self._settings.max_attempts):
            if self.cancelled:
                raise RunCancelled("Run cancelled.", unit_index=unit.index)
            try:
                data = engine.synthesize(unit.text, params)
            except InputError as exc:
                self._logger.warning("Unit %d has no speakable content (%s); using silence", unit.index, exc)
                return b""
            except BackendUnavailable as exc:
                self.health.record_failure(engine.name)
                self._logger.warning("Engine %s unavailable on unit %d: %s", engine.name, unit.index, exc)
                return exc
            except BackendTransientFailure as exc:
                self.health.record_failure(engine.name)
                last_error = exc
                if attempt + 1 >= self._settings.max_attempts:
                    break
                delay = _backoff_delay(attempt, self._settings.backoff_base, self._settings.backoff_jitter)
                self._logger.warning(
                    "Transient failure on unit %d with %s: %s. Retrying in %.2fs",
                    unit.index,
                    engine.name,
                    exc,
                    delay,
                )
                self._sleep(delay)
            else:
                self.health.record_success(engine.name)
                return data
        self._logger.error(
            "Engine %s failed unit %d after %d attempt(s): %s",
            engine.name,
            unit.index,
            self._settings.max_attempts,
            last_error,
        )
        return last_error

    def _store(self, key: str, data: bytes) -> bytes:
        if not data:
            return data
        try:
            stored_new = self._cache.put(key, data)
        except OSError as exc:
            self._logger.warning("Could not cache %s: %s", key, exc)
            return data
        if stored_new:
            return data
        stored = self._cache.get(key)
        return stored if stored is not None else data

    def _tick(self, total: int, on_progress: ProgressCallback | None) -> None:
        with self._progress_lock:
            self._completed += 1
            if on_progress is not None:
                on_progress(self._completed, total)


def collect_buffers(units: Sequence[SynthesisUnit], buffers: Sequence[bytes | None]) -> list[bytes]:
    missing = [units[position].index for position, data in enumerate(buffers) if data is None]
    if missing:
        raise RuntimeError(f"Unresolved unit(s) after synthesis: {missing[:10]}")
    return [data for data in buffers if data is not None]


def _ordered_units(units: Sequence[SynthesisUnit]) -> list[SynthesisUnit]:
    ordered = sorted(units, key=lambda unit: unit.index)
    seen: set[int] = set()
    for unit in ordered:
        if unit.index in seen:
            raise ValueError(f"Duplicate unit index {unit.index}")
        seen.add(unit.index)
    return ordered


def _backoff_delay(attempt: int, base: float, jitter: float) -> float:
    delay = base * (2**attempt)
    if jitter <= 0:
        return delay
    return delay + (delay * jitter)
