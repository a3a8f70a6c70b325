"""TTS engine registry, active-engine selection and backend diagnostics."""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import shutil
import threading
from typing import Sequence

from .config import Config
from .errors import BackendExhausted
from .interfaces import SynthesisParams, TtsEngine
from .tts_engine import EspeakEngine, EspeakNgEngine, FestivalEngine, SubprocessTtsEngine

_LOGGER = logging.getLogger(__name__)

ENGINE_PREFERENCE: tuple[type[SubprocessTtsEngine], ...] = (EspeakNgEngine, EspeakEngine, FestivalEngine)

ENCODER_EXECUTABLES: dict[str, tuple[str, ...]] = {
    "flac": ("flac", "ffmpeg"),
    "vorbis": ("oggenc", "ffmpeg"),
    "mp3": ("lame", "ffmpeg"),
    "wav": (),
}


@dataclass(frozen=True)
class BackendDiagnostic:
    name: str
    status: str
    detail: str


def build_engines(config: Config) -> list[SubprocessTtsEngine]:
    """Instantiate the configured engines in the fixed preference order."""
    wanted = set(config.tts.engines)
    return [
        engine_cls(timeout_seconds=config.tts.timeout_seconds)
        for engine_cls in ENGINE_PREFERENCE
        if engine_cls.name in wanted
    ]


def base_params(config: Config, engine: str) -> SynthesisParams:
    return SynthesisParams(
        engine=engine,
        voice=config.tts.voice,
        speed=config.tts.speed,
        pitch=config.tts.pitch,
        sample_rate=config.tts.sample_rate,
        channels=config.tts.channels,
    )


class EngineChain:
    """Ordered engine variants with one active engine per run.

    ``activate`` probes from the top of the preference list. ``demote``
    moves past a failing engine for the remainder of the run; a demotion
    reported for an engine that is no longer active is ignored, so
    concurrent workers failing on the same engine advance the chain once.
    Probes run outside the lock that guards ``active``, so readers keep
    seeing the outgoing engine until its replacement has passed its probe.
    """

    def __init__(self, engines: Sequence[TtsEngine], logger: logging.Logger | None = None) -> None:
        self._engines = list(engines)
        self._logger = logger or _LOGGER
        self._lock = threading.Lock()
        self._switch_lock = threading.Lock()
        self._position = -1
        self._params: SynthesisParams | None = None

    @property
    def engines(self) -> list[TtsEngine]:
        return list(self._engines)

    @property
    def active(self) -> TtsEngine:
        with self._lock:
            if self._position < 0 or self._position >= len(self._engines):
                raise BackendExhausted("No usable synthesis backend.")
            return self._engines[self._position]

    def activate(self, params: SynthesisParams) -> TtsEngine:
        with self._switch_lock:
            with self._lock:
                self._params = params
            return self._settle(self._next_usable(0, params))

    def demote(self, failed: TtsEngine) -> TtsEngine:
        with self._switch_lock:
            with self._lock:
                position = self._position
                if 0 <= position < len(self._engines) and self._engines[position] is not failed:
                    return self._engines[position]
                if position >= len(self._engines):
                    raise BackendExhausted("No usable synthesis backend.")
                params = self._params
            self._logger.warning("Demoting engine %s for the remainder of the run", failed.name)
            return self._settle(self._next_usable(position + 1, params))

    def _settle(self, position: int) -> TtsEngine:
        with self._lock:
            self._position = position
            if position < len(self._engines):
                return self._engines[position]
        tried = ", ".join(engine.name for engine in self._engines) or "none configured"
        raise BackendExhausted(f"No usable synthesis backend (tried: {tried}).")

    def _next_usable(self, start: int, params: SynthesisParams | None) -> int:
        for position in range(max(start, 0), len(self._engines)):
            engine = self._engines[position]
            if engine.probe(_params_for(params, engine.name)):
                self._logger.info("Active synthesis engine: %s", engine.name)
                return position
            self._logger.warning("Engine %s is unavailable; trying the next one", engine.name)
        return len(self._engines)


def backend_diagnostics(config: Config) -> list[BackendDiagnostic]:
    checks: list[BackendDiagnostic] = []
    for engine in build_engines(config):
        executable = engine.executable
        if engine.is_installed():
            checks.append(BackendDiagnostic(f"TTS {engine.name}", "OK", f"{executable} found in PATH."))
        else:
            checks.append(BackendDiagnostic(f"TTS {engine.name}", "WARN", f"{executable} not found in PATH."))

    if not any(check.status == "OK" for check in checks):
        checks.append(
            BackendDiagnostic(
                "TTS backend",
                "FAIL",
                "No speech engine found. Install espeak-ng, espeak or festival.",
            )
        )

    fmt = config.output.format
    executables = ENCODER_EXECUTABLES.get(fmt, ())
    if not executables:
        checks.append(BackendDiagnostic("Encoder", "OK", f"{fmt} is written in-process."))
        return checks
    found = [name for name in executables if shutil.which(name)]
    if found:
        checks.append(BackendDiagnostic("Encoder", "OK", f"{fmt} via {found[0]}."))
    else:
        checks.append(
            BackendDiagnostic(
                "Encoder",
                "FAIL",
                f"No {fmt} encoder found. Install {' or '.join(executables)}.",
            )
        )
    return checks


def _params_for(params: SynthesisParams | None, engine: str) -> SynthesisParams:
    if params is None:
        return SynthesisParams(engine=engine)
    return replace(params, engine=engine)
