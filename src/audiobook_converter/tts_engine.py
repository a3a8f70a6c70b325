"""Out-of-process speech synthesis engines."""

from __future__ import annotations

from dataclasses import dataclass
import io
import logging
import re
import shutil
import subprocess
import wave

from .errors import BackendTransientFailure, BackendUnavailable, InputError
from .interfaces import SynthesisParams, TtsEngine

_LOGGER = logging.getLogger(__name__)

PROBE_TEXT = "Test."
_BASE_WORDS_PER_MINUTE = 175
_BASE_PITCH = 50


@dataclass
class SubprocessTtsEngine(TtsEngine):
    """Run a command-line synthesizer that writes a WAV file to stdout.

    Subclasses provide the executable name and the argv for one call; the
    base class feeds the text on stdin, bounds the call by a timeout and
    decodes the WAV output.
    """

    name = "subprocess"
    executable = ""

    timeout_seconds: float = 120.0

    def is_installed(self) -> bool:
        return shutil.which(self.executable) is not None

    def build_command(self, text: str, params: SynthesisParams) -> list[str]:  # pragma: no cover - abstract
        raise NotImplementedError

    def stdin_payload(self, text: str) -> bytes | None:
        # Unit text may start with "-", so it never goes on argv.
        return text.encode("utf-8")

    def probe(self, params: SynthesisParams) -> bool:
        try:
            self.synthesize(PROBE_TEXT, params)
        except (BackendUnavailable, BackendTransientFailure) as exc:
            _LOGGER.info("Engine %s failed self-test: %s", self.name, exc)
            return False
        return True

    def synthesize(self, text: str, params: SynthesisParams) -> bytes:
        text = text or ""
        if not _is_speakable_text(text):
            raise InputError("Input text is empty or contains no speakable content.")

        cmd = self.build_command(text, params)
        try:
            result = subprocess.run(
                cmd,
                input=self.stdin_payload(text),
                capture_output=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as exc:
            raise BackendUnavailable(f"{self.executable} is not installed or not in PATH.") from exc
        except PermissionError as exc:
            raise BackendUnavailable(f"{self.executable} cannot be executed: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise BackendTransientFailure(
                f"{self.name} timed out after {self.timeout_seconds:.0f}s and was killed."
            ) from exc

        stderr = _decode_stderr(result.stderr)
        if result.returncode != 0:
            raise BackendTransientFailure(
                f"{self.name} exited with status {result.returncode}: {stderr or 'no diagnostic output'}",
                stderr=stderr,
            )
        return decode_wav(result.stdout, params, source=self.name)


@dataclass
class EspeakNgEngine(SubprocessTtsEngine):
    name = "espeak-ng"
    executable = "espeak-ng"

    def build_command(self, text: str, params: SynthesisParams) -> list[str]:
        return _espeak_command(self.executable, params)


@dataclass
class EspeakEngine(SubprocessTtsEngine):
    name = "espeak"
    executable = "espeak"

    def build_command(self, text: str, params: SynthesisParams) -> list[str]:
        return _espeak_command(self.executable, params)


@dataclass
class FestivalEngine(SubprocessTtsEngine):
    """Festival through its ``text2wave`` front end (text on stdin)."""

    name = "festival"
    executable = "text2wave"

    def build_command(self, text: str, params: SynthesisParams) -> list[str]:
        stretch = 1.0 / params.speed if params.speed > 0 else 1.0
        return [
            self.executable,
            "-F",
            str(params.sample_rate),
            "-eval",
            f"(Parameter.set 'Duration_Stretch {stretch:.3f})",
            "-o",
            "-",
        ]


def decode_wav(payload: bytes, params: SynthesisParams, *, source: str = "engine") -> bytes:
    """Return raw PCM frames from a WAV payload, checked against ``params``."""
    if not payload:
        raise BackendTransientFailure(f"{source} produced no audio.")
    try:
        with wave.open(io.BytesIO(payload), "rb") as handle:
            channels = handle.getnchannels()
            width = handle.getsampwidth()
            rate = handle.getframerate()
            frames = handle.readframes(handle.getnframes())
    except (wave.Error, EOFError) as exc:
        raise BackendTransientFailure(f"{source} produced malformed WAV output: {exc}") from exc

    if (channels, width, rate) != (params.channels, params.sample_width, params.sample_rate):
        raise BackendTransientFailure(
            f"{source} produced {rate} Hz/{channels} ch/{width * 8}-bit audio; "
            f"expected {params.sample_rate} Hz/{params.channels} ch/{params.sample_width * 8}-bit."
        )
    # Streamed WAV headers may overstate the length; keep whole frames only.
    usable = len(frames) - (len(frames) % params.frame_size)
    if usable <= 0:
        raise BackendTransientFailure(f"{source} produced empty audio.")
    return frames[:usable]


def _espeak_command(executable: str, params: SynthesisParams) -> list[str]:
    cmd = [executable]
    if params.voice:
        cmd.extend(["-v", params.voice])
    cmd.extend(
        [
            "-s",
            str(int(params.speed * _BASE_WORDS_PER_MINUTE)),
            "-p",
            str(max(0, min(99, int(params.pitch * _BASE_PITCH)))),
            "-a",
            "100",
            "--stdout",
            "--stdin",
        ]
    )
    return cmd


def _decode_stderr(stderr: bytes | str | None) -> str:
    if not stderr:
        return ""
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    return stderr.strip()


def _is_speakable_text(text: str) -> bool:
    stripped = text.strip()
    if not stripped:
        return False
    if re.fullmatch(r"[\W_]+", stripped):
        return False
    return True
