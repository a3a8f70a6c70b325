"""Concatenate PCM buffers and encode them into the requested container."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
import shutil
import subprocess
import tempfile
import wave
from typing import Sequence

from .errors import BackendUnavailable, EncodeFailure
from .interfaces import AudioEncoder, SynthesisParams
from .utils import clamp, ensure_dir

_LOGGER = logging.getLogger(__name__)


class OutputFormat(Enum):
    FLAC = "flac"
    VORBIS = "vorbis"
    MP3 = "mp3"
    WAV = "wav"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @classmethod
    def parse(cls, value: str | OutputFormat) -> OutputFormat:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            choices = ", ".join(fmt.value for fmt in cls)
            raise ValueError(f"Unsupported output format '{value}'. Choose one of: {choices}.") from exc


_EXTENSIONS = {
    OutputFormat.FLAC: "flac",
    OutputFormat.VORBIS: "ogg",
    OutputFormat.MP3: "mp3",
    OutputFormat.WAV: "wav",
}


def validate_buffers(buffers: Sequence[bytes], params: SynthesisParams) -> None:
    frame_size = params.frame_size
    for position, data in enumerate(buffers):
        if len(data) % frame_size:
            raise ValueError(
                f"Buffer {position} holds {len(data)} bytes, not a multiple of the {frame_size}-byte frame size."
            )


def silence_pcm(duration_ms: int, params: SynthesisParams) -> bytes:
    if duration_ms <= 0:
        return b""
    frames = int(params.sample_rate * (duration_ms / 1000.0))
    return b"\x00" * (frames * params.frame_size)


def stitch_wav(buffers: Sequence[bytes], out_path: Path, params: SynthesisParams) -> Path:
    """Write ``buffers`` back to back into one PCM WAV file."""
    validate_buffers(buffers, params)
    ensure_dir(out_path.parent)
    with wave.open(str(out_path), "wb") as output:
        output.setnchannels(params.channels)
        output.setsampwidth(params.sample_width)
        output.setframerate(params.sample_rate)
        for data in buffers:
            output.writeframes(data)
    return out_path


def pcm_duration_ms(buffers: Sequence[bytes], params: SynthesisParams) -> int:
    frames = sum(len(data) for data in buffers) // params.frame_size
    if params.sample_rate <= 0:
        return 0
    return int(round((frames / params.sample_rate) * 1000))


@dataclass
class WavEncoder(AudioEncoder):
    format = OutputFormat.WAV

    def encode(
        self,
        buffers: Sequence[bytes],
        out_path: Path,
        quality: float,
        params: SynthesisParams,
    ) -> Path:
        return stitch_wav(buffers, out_path, params)


@dataclass
class ExternalEncoder(AudioEncoder):
    """Stitch to a temporary WAV, then hand it to a command-line encoder.

    ``executables`` lists the tools to try in order; the first one found in
    PATH is used.
    """

    format = OutputFormat.WAV
    executables: tuple[str, ...] = ()
    package_hint = ""

    timeout_seconds: float | None = None
    logger: logging.Logger | None = None

    def available_executable(self) -> str | None:
        for name in self.executables:
            if shutil.which(name):
                return name
        return None

    def build_command(self, tool: str, wav_path: Path, out_path: Path, quality: float) -> list[str]:  # pragma: no cover
        raise NotImplementedError

    def encode(
        self,
        buffers: Sequence[bytes],
        out_path: Path,
        quality: float,
        params: SynthesisParams,
    ) -> Path:
        logger = self.logger or _LOGGER
        validate_buffers(buffers, params)
        tool = self.available_executable()
        if tool is None:
            raise BackendUnavailable(
                f"No {self.format.value} encoder found (looked for {', '.join(self.executables)}). "
                f"Install {self.package_hint}."
            )

        quality = clamp(quality, 0.0, 1.0)
        ensure_dir(out_path.parent)
        with tempfile.TemporaryDirectory(prefix="encode-", dir=out_path.parent) as tmp_dir:
            wav_path = stitch_wav(buffers, Path(tmp_dir) / "stitched.wav", params)
            cmd = self.build_command(tool, wav_path, out_path, quality)
            logger.info("Encoding %s with %s", out_path.name, tool)
            logger.debug("Encoder command: %s", " ".join(cmd))
            _run_encoder(cmd, tool, self.timeout_seconds, logger)

        if not out_path.exists() or out_path.stat().st_size == 0:
            raise EncodeFailure(f"{tool} reported success but produced no output at {out_path}.")
        return out_path


@dataclass
class FlacEncoder(ExternalEncoder):
    format = OutputFormat.FLAC
    executables: tuple[str, ...] = ("flac", "ffmpeg")
    package_hint = "flac or ffmpeg"

    def build_command(self, tool: str, wav_path: Path, out_path: Path, quality: float) -> list[str]:
        level = flac_compression_level(quality)
        if tool == "ffmpeg":
            return _ffmpeg_command(wav_path, out_path, ["-c:a", "flac", "-compression_level", str(level)])
        return [tool, f"-{level}", "--silent", "--force", "-o", str(out_path), str(wav_path)]


@dataclass
class VorbisEncoder(ExternalEncoder):
    format = OutputFormat.VORBIS
    executables: tuple[str, ...] = ("oggenc", "ffmpeg")
    package_hint = "vorbis-tools (oggenc) or ffmpeg"

    def build_command(self, tool: str, wav_path: Path, out_path: Path, quality: float) -> list[str]:
        level = vorbis_quality(quality)
        if tool == "ffmpeg":
            return _ffmpeg_command(wav_path, out_path, ["-c:a", "libvorbis", "-q:a", str(level)])
        return [tool, "--quiet", "-q", str(level), "-o", str(out_path), str(wav_path)]


@dataclass
class Mp3Encoder(ExternalEncoder):
    format = OutputFormat.MP3
    executables: tuple[str, ...] = ("lame", "ffmpeg")
    package_hint = "lame or ffmpeg"

    def build_command(self, tool: str, wav_path: Path, out_path: Path, quality: float) -> list[str]:
        level = mp3_vbr_level(quality)
        if tool == "ffmpeg":
            return _ffmpeg_command(wav_path, out_path, ["-c:a", "libmp3lame", "-q:a", str(level)])
        return [tool, "--quiet", "-V", str(level), str(wav_path), str(out_path)]


def vorbis_quality(quality: float) -> int:
    return int(round(clamp(quality, 0.0, 1.0) * 10))


def mp3_vbr_level(quality: float) -> int:
    # LAME VBR: 0 is best, 9 is smallest.
    return int(round(9 - clamp(quality, 0.0, 1.0) * 9))


def flac_compression_level(quality: float) -> int:
    return int(round(clamp(quality, 0.0, 1.0) * 8))


def build_encoder(
    fmt: str | OutputFormat,
    *,
    timeout_seconds: float | None = None,
    logger: logging.Logger | None = None,
) -> AudioEncoder:
    output_format = OutputFormat.parse(fmt)
    if output_format is OutputFormat.WAV:
        return WavEncoder()
    encoder_cls = _ENCODERS[output_format]
    return encoder_cls(timeout_seconds=timeout_seconds, logger=logger)


_ENCODERS: dict[OutputFormat, type[ExternalEncoder]] = {
    OutputFormat.FLAC: FlacEncoder,
    OutputFormat.VORBIS: VorbisEncoder,
    OutputFormat.MP3: Mp3Encoder,
}


def _ffmpeg_command(wav_path: Path, out_path: Path, codec_args: list[str]) -> list[str]:
    return [
        "ffmpeg",
        "-hide_banner",
        "-nostats",
        "-loglevel",
        "error",
        "-y",
        "-i",
        str(wav_path),
        *codec_args,
        str(out_path),
    ]


def _run_encoder(cmd: list[str], tool: str, timeout: float | None, logger: logging.Logger) -> None:
    try:
        result = subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as exc:
        raise BackendUnavailable(f"{tool} is required for encoding but was not found in PATH.") from exc
    except subprocess.TimeoutExpired as exc:
        raise EncodeFailure(f"{tool} timed out after {timeout:.0f}s.") from exc

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        logger.error("%s failed: %s", tool, stderr)
        raise EncodeFailure(f"{tool} exited with status {result.returncode}: {stderr or 'no diagnostic output'}")
