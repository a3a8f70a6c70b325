from __future__ import annotations

from pathlib import Path
import subprocess
from types import SimpleNamespace
import wave

import pytest

from audiobook_converter import audio_encoder
from audiobook_converter.audio_encoder import (
    FlacEncoder,
    Mp3Encoder,
    OutputFormat,
    VorbisEncoder,
    WavEncoder,
    build_encoder,
    flac_compression_level,
    mp3_vbr_level,
    pcm_duration_ms,
    silence_pcm,
    stitch_wav,
    vorbis_quality,
)
from audiobook_converter.errors import BackendUnavailable, EncodeFailure
from audiobook_converter.interfaces import SynthesisParams

PARAMS = SynthesisParams(engine="espeak-ng")


class TestOutputFormat:
    def test_parse_is_case_insensitive(self) -> None:
        assert OutputFormat.parse(" FLAC ") is OutputFormat.FLAC
        assert OutputFormat.parse(OutputFormat.MP3) is OutputFormat.MP3

    def test_parse_rejects_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unsupported output format"):
            OutputFormat.parse("aac")

    def test_extensions(self) -> None:
        assert [fmt.extension for fmt in OutputFormat] == ["flac", "ogg", "mp3", "wav"]


class TestQualityMapping:
    def test_vorbis(self) -> None:
        assert (vorbis_quality(0.0), vorbis_quality(0.7), vorbis_quality(1.0)) == (0, 7, 10)

    def test_mp3_best_is_zero(self) -> None:
        assert (mp3_vbr_level(0.0), mp3_vbr_level(0.7), mp3_vbr_level(1.0)) == (9, 3, 0)

    def test_flac(self) -> None:
        assert (flac_compression_level(0.0), flac_compression_level(0.7), flac_compression_level(1.0)) == (0, 6, 8)

    def test_out_of_range_is_clamped(self) -> None:
        assert vorbis_quality(3.0) == 10
        assert mp3_vbr_level(-1.0) == 9


class TestWav:
    def test_stitch_concatenates_in_order(self, tmp_path: Path) -> None:
        out = stitch_wav([b"\x01\x00", b"\x02\x00\x03\x00"], tmp_path / "book.wav", PARAMS)
        with wave.open(str(out), "rb") as handle:
            assert handle.getnchannels() == 1
            assert handle.getsampwidth() == 2
            assert handle.getframerate() == 22050
            assert handle.readframes(handle.getnframes()) == b"\x01\x00\x02\x00\x03\x00"

    def test_misaligned_buffer_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="frame size"):
            WavEncoder().encode([b"\x00\x00", b"\x00"], tmp_path / "book.wav", 0.5, PARAMS)

    def test_silence_length(self) -> None:
        assert silence_pcm(1000, PARAMS) == b"\x00" * 44100
        assert silence_pcm(0, PARAMS) == b""
        assert pcm_duration_ms([silence_pcm(250, PARAMS)], PARAMS) == 250


class TestCommands:
    def test_native_tools(self, tmp_path: Path) -> None:
        wav, out = tmp_path / "in.wav", tmp_path / "out"
        assert FlacEncoder().build_command("flac", wav, out, 1.0) == [
            "flac", "-8", "--silent", "--force", "-o", str(out), str(wav),
        ]
        assert VorbisEncoder().build_command("oggenc", wav, out, 0.5) == [
            "oggenc", "--quiet", "-q", "5", "-o", str(out), str(wav),
        ]
        assert Mp3Encoder().build_command("lame", wav, out, 1.0) == [
            "lame", "--quiet", "-V", "0", str(wav), str(out),
        ]

    def test_ffmpeg_fallback(self, tmp_path: Path) -> None:
        wav, out = tmp_path / "in.wav", tmp_path / "out.ogg"
        cmd = VorbisEncoder().build_command("ffmpeg", wav, out, 0.7)
        assert cmd[0] == "ffmpeg"
        assert cmd[-1] == str(out)
        assert ["-c:a", "libvorbis", "-q:a", "7"] == cmd[cmd.index("-c:a") : cmd.index("-c:a") + 4]


def test_build_encoder_variants() -> None:
    assert isinstance(build_encoder("wav"), WavEncoder)
    encoder = build_encoder("mp3", timeout_seconds=30)
    assert isinstance(encoder, Mp3Encoder)
    assert encoder.timeout_seconds == 30


class TestExternalEncode:
    def test_missing_tool_is_unavailable(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(audio_encoder.shutil, "which", lambda name: None)
        with pytest.raises(BackendUnavailable, match="flac or ffmpeg"):
            FlacEncoder().encode([b"\x00\x00"], tmp_path / "book.flac", 0.5, PARAMS)

    def test_prefers_native_tool_and_cleans_temp_wav(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[list[str]] = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            Path(cmd[cmd.index("-o") + 1]).write_bytes(b"OggS")
            return SimpleNamespace(returncode=0, stderr="")

        monkeypatch.setattr(audio_encoder.shutil, "which", lambda name: f"/usr/bin/{name}")
        monkeypatch.setattr(audio_encoder.subprocess, "run", fake_run)
        out = tmp_path / "book" / "book.ogg"
        assert VorbisEncoder().encode([b"\x00\x00"], out, 0.7, PARAMS) == out
        assert calls[0][0] == "oggenc"
        assert out.read_bytes() == b"OggS"
        assert [path.name for path in out.parent.iterdir()] == ["book.ogg"]

    def test_uses_ffmpeg_when_native_tool_missing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[list[str]] = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            Path(cmd[-1]).write_bytes(b"ID3")
            return SimpleNamespace(returncode=0, stderr="")

        monkeypatch.setattr(audio_encoder.shutil, "which", lambda name: "/usr/bin/ffmpeg" if name == "ffmpeg" else None)
        monkeypatch.setattr(audio_encoder.subprocess, "run", fake_run)
        Mp3Encoder().encode([b"\x00\x00"], tmp_path / "book.mp3", 0.7, PARAMS)
        assert calls[0][0] == "ffmpeg"

    def test_non_zero_exit_is_encode_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(audio_encoder.shutil, "which", lambda name: f"/usr/bin/{name}")
        monkeypatch.setattr(
            audio_encoder.subprocess,
            "run",
            lambda cmd, **kwargs: SimpleNamespace(returncode=1, stderr="bad input\n"),
        )
        with pytest.raises(EncodeFailure, match="bad input"):
            FlacEncoder().encode([b"\x00\x00"], tmp_path / "book.flac", 0.5, PARAMS)

    def test_timeout_is_encode_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd=cmd, timeout=kwargs["timeout"])

        monkeypatch.setattr(audio_encoder.shutil, "which", lambda name: f"/usr/bin/{name}")
        monkeypatch.setattr(audio_encoder.subprocess, "run", fake_run)
        with pytest.raises(EncodeFailure, match="timed out"):
            FlacEncoder(timeout_seconds=2).encode([b"\x00\x00"], tmp_path / "book.flac", 0.5, PARAMS)

    def test_missing_output_is_encode_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(audio_encoder.shutil, "which", lambda name: f"/usr/bin/{name}")
        monkeypatch.setattr(audio_encoder.subprocess, "run", lambda cmd, **kwargs: SimpleNamespace(returncode=0, stderr=""))
        with pytest.raises(EncodeFailure, match="no output"):
            FlacEncoder().encode([b"\x00\x00"], tmp_path / "book.flac", 0.5, PARAMS)
