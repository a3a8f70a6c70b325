from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from audiobook_converter import tts_factory
from audiobook_converter.config import load_config
from audiobook_converter.doctor import DoctorCheck, DoctorOptions, render_report, run_doctor
from audiobook_converter.interfaces import SynthesisParams, TtsEngine
from audiobook_converter.tts_factory import EngineChain


class ToneEngine(TtsEngine):
    name = "espeak-ng"

    def __init__(self, pcm: bytes) -> None:
        self.pcm = pcm

    def probe(self, params: SynthesisParams) -> bool:
        return True

    def synthesize(self, text: str, params: SynthesisParams) -> bytes:
        return self.pcm


@pytest.fixture
def all_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tts_factory.shutil, "which", lambda name: f"/usr/bin/{name}")


def test_report_fails_without_any_backend(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setattr(tts_factory.shutil, "which", lambda name: None)
    assert run_doctor(load_config(cwd=tmp_path), DoctorOptions()) == 1
    output = capsys.readouterr().out
    assert output.startswith("epub-audiobook-converter doctor")
    assert "[FAIL] TTS backend" in output


def test_report_passes_with_tools(tmp_path: Path, all_tools, capsys) -> None:
    assert run_doctor(load_config(cwd=tmp_path), DoctorOptions()) == 0
    assert "[OK] TTS espeak-ng" in capsys.readouterr().out


def test_smoke_test_reports_audio(tmp_path: Path, all_tools, capsys) -> None:
    chain = EngineChain([ToneEngine(b"\x10\x00" * 2205)])
    assert run_doctor(load_config(cwd=tmp_path), DoctorOptions(smoke_test=True), chain=chain) == 0
    output = capsys.readouterr().out
    assert "[OK] Smoke test: espeak-ng produced 100 ms of audio" in output
    assert "[OK] Audio quality: No clipping detected." in output


def test_smoke_test_flags_silent_engine(tmp_path: Path, all_tools, capsys) -> None:
    chain = EngineChain([ToneEngine(b"")])
    assert run_doctor(load_config(cwd=tmp_path), DoctorOptions(smoke_test=True), chain=chain) == 1
    assert "[FAIL] Smoke test: espeak-ng produced no audio." in capsys.readouterr().out


def test_encode_test_writes_wav(tmp_path: Path, all_tools, capsys) -> None:
    config = load_config(cwd=tmp_path)
    config = replace(config, output=replace(config.output, format="wav"))
    options = DoctorOptions(encode_test=True, output_dir=tmp_path / "doctor")
    assert run_doctor(config, options) == 0
    assert (tmp_path / "doctor" / "doctor.wav").stat().st_size > 44
    assert "[OK] Encode test" in capsys.readouterr().out


def test_render_report() -> None:
    report = render_report([DoctorCheck("CPU", "OK", "4 logical CPU(s).")])
    assert report.splitlines() == ["epub-audiobook-converter doctor", "", "[OK] CPU: 4 logical CPU(s)."]
