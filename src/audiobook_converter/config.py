"""Configuration loading and defaults."""

from __future__ import annotations

from dataclasses import dataclass, replace
import copy
from pathlib import Path
from typing import Any, Mapping

_TOML = None
try:  # pragma: no cover - module availability depends on Python version
    import tomllib as _TOML
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    try:
        import tomli as _TOML
    except ModuleNotFoundError:
        _TOML = None

OUTPUT_FORMATS = ("flac", "vorbis", "mp3", "wav")
ENGINE_NAMES = ("espeak-ng", "espeak", "festival")
ESPEAK_SAMPLE_RATE = 22050
_FIXED_RATE_ENGINES = ("espeak-ng", "espeak")

DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "epubs": "epubs",
        "out": "out",
        "cache": "cache",
        "logs": "logs",
        "errors": "logs/errors",
    },
    "logging": {
        "level": "INFO",
        "console_level": "INFO",
    },
    "tts": {
        "engines": list(ENGINE_NAMES),
        "voice": "en",
        "speed": 1.0,
        "pitch": 1.0,
        "sample_rate": 22050,
        "channels": 1,
        "max_chars": 1000,
        "min_chars": 200,
        "max_attempts": 2,
        "backoff_base": 0.5,
        "backoff_jitter": 0.1,
        "timeout_seconds": 120.0,
        "workers": 0,
    },
    "cache": {
        "enabled": True,
        "persistent": True,
        "max_entries": 10000,
        "max_bytes": 2 * 1024**3,
    },
    "output": {
        "format": "vorbis",
        "quality": 0.7,
    },
    "audio": {
        "paragraph_silence_ms": 250,
        "chapter_silence_ms": 1000,
    },
    "text": {
        "aggressive": True,
        "remove_citations": False,
    },
}


@dataclass(frozen=True)
class PathsConfig:
    epubs: Path
    out: Path
    cache: Path
    logs: Path
    errors: Path


@dataclass(frozen=True)
class LoggingConfig:
    level: str
    console_level: str


@dataclass(frozen=True)
class TtsConfig:
    engines: tuple[str, ...]
    voice: str | None
    speed: float
    pitch: float
    sample_rate: int
    channels: int
    max_chars: int
    min_chars: int
    max_attempts: int
    backoff_base: float
    backoff_jitter: float
    timeout_seconds: float
    workers: int


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool
    persistent: bool
    max_entries: int | None
    max_bytes: int | None


@dataclass(frozen=True)
class OutputConfig:
    format: str
    quality: float


@dataclass(frozen=True)
class AudioConfig:
    paragraph_silence_ms: int
    chapter_silence_ms: int


@dataclass(frozen=True)
class TextConfig:
    aggressive: bool
    remove_citations: bool


@dataclass(frozen=True)
class Config:
    paths: PathsConfig
    logging: LoggingConfig
    tts: TtsConfig
    cache: CacheConfig
    output: OutputConfig
    audio: AudioConfig
    text: TextConfig
    source: Path | None = None


def load_config(config_path: Path | None = None, *, cwd: Path | None = None) -> Config:
    cwd = cwd or Path.cwd()
    source: Path | None = None
    raw: Mapping[str, Any] = {}

    if config_path is None:
        candidate = cwd / "config.toml"
        if candidate.exists():
            source = candidate
            raw = _read_toml(candidate)
    else:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        source = config_path
        raw = _read_toml(config_path)

    merged = _deep_merge(_clone_defaults(DEFAULT_CONFIG), raw)
    base_dir = source.parent if source is not None else cwd

    paths_raw = merged["paths"]
    paths = PathsConfig(
        epubs=_resolve_path(base_dir, paths_raw["epubs"]),
        out=_resolve_path(base_dir, paths_raw["out"]),
        cache=_resolve_path(base_dir, paths_raw["cache"]),
        logs=_resolve_path(base_dir, paths_raw["logs"]),
        errors=_resolve_path(base_dir, paths_raw["errors"]),
    )
    logging = LoggingConfig(
        level=str(merged["logging"]["level"]).upper(),
        console_level=str(merged["logging"]["console_level"]).upper(),
    )
    tts_raw = merged["tts"]
    tts = TtsConfig(
        engines=_engine_list(tts_raw.get("engines")),
        voice=_optional_str(tts_raw.get("voice")),
        speed=float(tts_raw["speed"]),
        pitch=float(tts_raw["pitch"]),
        sample_rate=int(tts_raw["sample_rate"]),
        channels=int(tts_raw["channels"]),
        max_chars=int(tts_raw["max_chars"]),
        min_chars=int(tts_raw["min_chars"]),
        max_attempts=int(tts_raw["max_attempts"]),
        backoff_base=float(tts_raw["backoff_base"]),
        backoff_jitter=float(tts_raw["backoff_jitter"]),
        timeout_seconds=float(tts_raw["timeout_seconds"]),
        workers=int(tts_raw["workers"]),
    )
    cache_raw = merged["cache"]
    cache = CacheConfig(
        enabled=bool(cache_raw["enabled"]),
        persistent=bool(cache_raw["persistent"]),
        max_entries=_optional_positive_int(cache_raw.get("max_entries")),
        max_bytes=_optional_positive_int(cache_raw.get("max_bytes")),
    )
    output = OutputConfig(
        format=str(merged["output"]["format"]).strip().lower(),
        quality=float(merged["output"]["quality"]),
    )
    audio = AudioConfig(
        paragraph_silence_ms=int(merged["audio"]["paragraph_silence_ms"]),
        chapter_silence_ms=int(merged["audio"]["chapter_silence_ms"]),
    )
    text = TextConfig(
        aggressive=bool(merged["text"]["aggressive"]),
        remove_citations=bool(merged["text"]["remove_citations"]),
    )
    config = Config(
        paths=paths,
        logging=logging,
        tts=tts,
        cache=cache,
        output=output,
        audio=audio,
        text=text,
        source=source,
    )
    validate_config(config)
    return config


def validate_config(config: Config) -> None:
    if config.output.format not in OUTPUT_FORMATS:
        raise ValueError(
            f"Unsupported output format '{config.output.format}'. Choose one of: {', '.join(OUTPUT_FORMATS)}."
        )
    if not 0.0 <= config.output.quality <= 1.0:
        raise ValueError(f"Quality must be within [0, 1] (got {config.output.quality}).")
    if config.tts.speed <= 0:
        raise ValueError(f"Speed must be positive (got {config.tts.speed}).")
    if config.tts.workers < 0:
        raise ValueError(f"Worker count cannot be negative (got {config.tts.workers}).")
    if config.tts.sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive (got {config.tts.sample_rate}).")
    if config.tts.channels != 1:
        raise ValueError(f"Only mono synthesis is supported (got channels = {config.tts.channels}).")
    espeak_family = [name for name in config.tts.engines if name in _FIXED_RATE_ENGINES]
    if espeak_family and config.tts.sample_rate != ESPEAK_SAMPLE_RATE:
        raise ValueError(
            f"{', '.join(espeak_family)} only produce {ESPEAK_SAMPLE_RATE} Hz audio; "
            f"set sample_rate = {ESPEAK_SAMPLE_RATE} or use engines = [\"festival\"]."
        )
    if config.tts.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1.")
    if config.tts.timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be positive.")
    if not config.tts.engines:
        raise ValueError(f"At least one TTS engine is required ({', '.join(ENGINE_NAMES)}).")
    if config.audio.paragraph_silence_ms < 0 or config.audio.chapter_silence_ms < 0:
        raise ValueError("Silence durations cannot be negative.")


def apply_overrides(
    config: Config,
    *,
    output_format: str | None = None,
    quality: float | None = None,
    speed: float | None = None,
    workers: int | None = None,
    cache_enabled: bool | None = None,
) -> Config:
    """Return ``config`` with command-line overrides applied and re-validated."""
    output = config.output
    if output_format is not None:
        output = replace(output, format=output_format.strip().lower())
    if quality is not None:
        output = replace(output, quality=float(quality))
    tts = config.tts
    if speed is not None:
        tts = replace(tts, speed=float(speed))
    if workers is not None:
        tts = replace(tts, workers=int(workers))
    cache = config.cache
    if cache_enabled is not None:
        cache = replace(cache, enabled=cache_enabled)
    updated = replace(config, output=output, tts=tts, cache=cache)
    validate_config(updated)
    return updated


def config_summary(config: Config) -> str:
    source = str(config.source) if config.source is not None else "defaults"
    return (
        "Config\n"
        f"  source: {source}\n"
        f"  epubs: {config.paths.epubs}\n"
        f"  out: {config.paths.out}\n"
        f"  cache: {config.paths.cache}\n"
        f"  logs: {config.paths.logs}\n"
        f"  log level: {config.logging.level}\n"
        f"  console level: {config.logging.console_level}\n"
        "TTS\n"
        f"  engines: {', '.join(config.tts.engines)}\n"
        f"  voice: {config.tts.voice or 'default'}\n"
        f"  speed: {config.tts.speed}\n"
        f"  pitch: {config.tts.pitch}\n"
        f"  sample_rate: {config.tts.sample_rate}\n"
        f"  max_chars: {config.tts.max_chars}\n"
        f"  max_attempts: {config.tts.max_attempts}\n"
        f"  workers: {config.tts.workers or 'auto'}\n"
        "Cache\n"
        f"  enabled: {config.cache.enabled}\n"
        f"  persistent: {config.cache.persistent}\n"
        f"  max_entries: {config.cache.max_entries or 'unbounded'}\n"
        f"  max_bytes: {config.cache.max_bytes or 'unbounded'}\n"
        "Output\n"
        f"  format: {config.output.format}\n"
        f"  quality: {config.output.quality}"
    )


_DEFAULT_CONFIG_TOML = """\
# epub-audiobook-converter configuration

[paths]
epubs = "epubs"
out = "out"
cache = "cache"
logs = "logs"
errors = "logs/errors"

[logging]
level = "INFO"
console_level = "INFO"

[tts]
# Engines are tried in this fixed preference order: espeak-ng, espeak, festival.
engines = ["espeak-ng", "espeak", "festival"]
voice = "en"
speed = 1.0
pitch = 1.0
# espeak-ng and espeak always write 22050 Hz mono; only festival resamples.
sample_rate = 22050
max_chars = 1000
min_chars = 200
# Attempts per unit on one engine before falling back to the next one.
max_attempts = 2
timeout_seconds = 120
# 0 uses every available CPU.
workers = 0

[cache]
enabled = true
persistent = true
max_entries = 10000
max_bytes = 2147483648

[output]
# flac, vorbis, mp3 or wav
format = "vorbis"
quality = 0.7

[audio]
paragraph_silence_ms = 250
chapter_silence_ms = 1000

[text]
aggressive = true
remove_citations = false
"""


def write_default_config(path: Path) -> Path:
    path.write_text(_DEFAULT_CONFIG_TOML, "utf-8")
    return path


def _read_toml(path: Path) -> Mapping[str, Any]:
    if _TOML is None:  # pragma: no cover
        raise RuntimeError("TOML parser unavailable. Install tomli or use Python 3.11+.")
    with path.open("rb") as handle:
        return _TOML.load(handle)


def _resolve_path(base_dir: Path, value: Any) -> Path:
    path = value if isinstance(value, Path) else Path(str(value))
    return path if path.is_absolute() else base_dir / path


def _clone_defaults(defaults: Mapping[str, Any]) -> dict[str, Any]:
    return copy.deepcopy(defaults)


def _deep_merge(base: Mapping[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _engine_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ENGINE_NAMES
    if isinstance(value, str):
        value = [value]
    names = [str(item).strip().lower() for item in value if str(item).strip()]
    unknown = [name for name in names if name not in ENGINE_NAMES]
    if unknown:
        raise ValueError(f"Unknown TTS engine(s): {', '.join(unknown)}.")
    return tuple(name for name in ENGINE_NAMES if name in names)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned or cleaned.lower() in {"none", "null"}:
            return None
        return cleaned
    return str(value)


def _optional_positive_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None
