"""Doctor checks for speech engines, encoders and host resources."""

from __future__ import annotations

import array
from dataclasses import dataclass, replace
import logging
from pathlib import Path
import platform
import tempfile
import time
from typing import Sequence

import psutil

from .audio_encoder import OutputFormat, build_encoder, pcm_duration_ms, silence_pcm
from .config import Config
from .errors import ConversionError
from .interfaces import AudioEncoder, SynthesisParams
from .tts_factory import EngineChain, backend_diagnostics, base_params, build_engines
from .utils import default_worker_count, ensure_dir

_LOGGER = logging.getLogger(__name__)

_MIN_RAM_GB = 2.0


@dataclass(frozen=True)
class DoctorOptions:
    smoke_test: bool = False
    encode_test: bool = False
    verify: bool = False
    text: str = "Hello world."
    output_dir: Path | None = None


@dataclass(frozen=True)
class DoctorCheck:
    name: str
    status: str
    detail: str


def run_doctor(config: Config, options: DoctorOptions, *, chain: EngineChain | None = None) -> int:
    checks: list[DoctorCheck] = []
    checks.extend(_check_environment(config))

    if options.smoke_test or options.verify:
        checks.extend(_run_smoke_test(config, options, chain))

    if options.encode_test or options.verify:
        checks.extend(_run_encode_test(config, options))

    print(render_report(checks))
    if any(check.status == "FAIL" for check in checks):
        return 1
    return 0


def _check_environment(config: Config) -> list[DoctorCheck]:
    checks = [DoctorCheck(check.name, check.status, check.detail) for check in backend_diagnostics(config)]

    workers = config.tts.workers or default_worker_count()
    checks.append(DoctorCheck("CPU", "OK", f"{psutil.cpu_count(logical=True) or 1} logical CPU(s); {workers} worker(s)."))

    total_ram_gb = psutil.virtual_memory().total / (1024**3)
    if total_ram_gb >= _MIN_RAM_GB:
        checks.append(DoctorCheck("Memory", "OK", f"Detected {total_ram_gb:.1f} GB RAM."))
    else:
        checks.append(DoctorCheck("Memory", "WARN", f"Only {total_ram_gb:.1f} GB RAM detected."))

    cache_root = config.paths.cache
    if cache_root.exists():
        free_gb = psutil.disk_usage(str(cache_root)).free / (1024**3)
        checks.append(DoctorCheck("Disk", "OK" if free_gb >= 1 else "WARN", f"{free_gb:.1f} GB free at {cache_root}."))

    checks.append(DoctorCheck("Platform", "OK", platform.platform()))
    return checks


def _run_smoke_test(config: Config, options: DoctorOptions, chain: EngineChain | None) -> list[DoctorCheck]:
    chain = chain or EngineChain(build_engines(config), _LOGGER)
    params = base_params(config, config.tts.engines[0])
    try:
        engine = chain.activate(params)
    except ConversionError as exc:
        return [DoctorCheck("Smoke test", "FAIL", str(exc))]

    params = replace(params, engine=engine.name)
    start = time.perf_counter()
    try:
        pcm = engine.synthesize(options.text or "Hello world.", params)
    except ConversionError as exc:
        return [DoctorCheck("Smoke test", "FAIL", f"{engine.name}: {exc}")]
    elapsed = time.perf_counter() - start

    duration_ms = pcm_duration_ms([pcm], params)
    if duration_ms <= 0:
        return [DoctorCheck("Smoke test", "FAIL", f"{engine.name} produced no audio.")]

    checks = [DoctorCheck("Smoke test", "OK", f"{engine.name} produced {duration_ms} ms of audio in {elapsed:.2f}s.")]
    rtf = elapsed / (duration_ms / 1000.0)
    checks.append(DoctorCheck("RTF", "OK" if rtf < 1.0 else "WARN", f"RTF {rtf:.2f}."))
    checks.append(_check_clipping(pcm, params))
    return checks


def _run_encode_test(config: Config, options: DoctorOptions) -> list[DoctorCheck]:
    output_format = OutputFormat.parse(config.output.format)
    params = base_params(config, "doctor")
    encoder = build_encoder(output_format)
    buffers = [silence_pcm(500, params)]

    if options.output_dir is not None:
        out_dir = ensure_dir(options.output_dir)
        return [_encode_sample(encoder, buffers, out_dir, output_format, config.output.quality, params)]
    with tempfile.TemporaryDirectory(prefix="doctor-") as tmp_dir:
        return [_encode_sample(encoder, buffers, Path(tmp_dir), output_format, config.output.quality, params)]


def _encode_sample(
    encoder: AudioEncoder,
    buffers: list[bytes],
    out_dir: Path,
    output_format: OutputFormat,
    quality: float,
    params: SynthesisParams,
) -> DoctorCheck:
    out_path = out_dir / f"doctor.{output_format.extension}"
    try:
        encoder.encode(buffers, out_path, quality, params)
    except ConversionError as exc:
        return DoctorCheck("Encode test", "FAIL", str(exc))
    size = out_path.stat().st_size
    return DoctorCheck("Encode test", "OK", f"Wrote {size} byte(s) of {output_format.value} to {out_path}.")


def _check_clipping(pcm: bytes, params: SynthesisParams) -> DoctorCheck:
    if params.sample_width != 2:
        return DoctorCheck("Audio quality", "WARN", "Non-16-bit audio; clipping analysis skipped.")
    samples = array.array("h")
    samples.frombytes(pcm)
    if not samples:
        return DoctorCheck("Audio quality", "WARN", "Empty audio frames.")
    if max(abs(sample) for sample in samples) >= 32000:
        return DoctorCheck("Audio quality", "WARN", "Potential clipping detected.")
    return DoctorCheck("Audio quality", "OK", "No clipping detected.")


def render_report(checks: Sequence[DoctorCheck]) -> str:
    lines = ["epub-audiobook-converter doctor", ""]
    for check in checks:
        lines.append(f"[{check.status}] {check.name}: {check.detail}")
    return "\n".join(lines)
