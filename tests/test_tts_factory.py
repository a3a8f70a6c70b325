from __future__ import annotations

from dataclasses import replace
from pathlib import Path
import threading

import pytest

from audiobook_converter import tts_factory
from audiobook_converter.config import load_config
from audiobook_converter.errors import BackendExhausted
from audiobook_converter.interfaces import SynthesisParams, TtsEngine
from audiobook_converter.tts_engine import EspeakNgEngine, FestivalEngine
from audiobook_converter.tts_factory import EngineChain, backend_diagnostics, base_params, build_engines


class DummyEngine(TtsEngine):
    def __init__(self, name: str, usable: bool = True) -> None:
        self.name = name
        self.usable = usable
        self.probed_with: list[SynthesisParams] = []

    def probe(self, params: SynthesisParams) -> bool:
        self.probed_with.append(params)
        return self.usable

    def synthesize(self, text: str, params: SynthesisParams) -> bytes:
        return b"\x00\x00"


class ObservingEngine(DummyEngine):
    """Reads the chain's active engine from another thread while probing."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.chain: EngineChain | None = None
        self.seen_during_probe: list[str] = []

    def probe(self, params: SynthesisParams) -> bool:
        reader = threading.Thread(target=lambda: self.seen_during_probe.append(self.chain.active.name))
        reader.start()
        reader.join(timeout=2)
        return super().probe(params)


PARAMS = SynthesisParams(engine="espeak-ng", voice="en")


def test_build_engines_follows_preference_order(tmp_path: Path) -> None:
    config = load_config(cwd=tmp_path)
    config = replace(config, tts=replace(config.tts, engines=("festival", "espeak-ng"), timeout_seconds=7.0))
    engines = build_engines(config)
    assert [type(engine) for engine in engines] == [EspeakNgEngine, FestivalEngine]
    assert all(engine.timeout_seconds == 7.0 for engine in engines)


def test_base_params_copies_voice_settings(tmp_path: Path) -> None:
    config = load_config(cwd=tmp_path)
    config = replace(config, tts=replace(config.tts, voice="en-gb", speed=1.5, pitch=0.9))
    params = base_params(config, "espeak")
    assert params == SynthesisParams(
        engine="espeak",
        voice="en-gb",
        speed=1.5,
        pitch=0.9,
        sample_rate=config.tts.sample_rate,
        channels=config.tts.channels,
    )


class TestEngineChain:
    def test_activate_picks_first_usable(self) -> None:
        broken = DummyEngine("espeak-ng", usable=False)
        working = DummyEngine("espeak")
        chain = EngineChain([broken, working])
        assert chain.activate(PARAMS) is working
        assert chain.active is working
        assert broken.probed_with[0].engine == "espeak-ng"
        assert working.probed_with[0].engine == "espeak"

    def test_active_before_activation_raises(self) -> None:
        with pytest.raises(BackendExhausted):
            EngineChain([DummyEngine("espeak-ng")]).active

    def test_activate_with_nothing_usable(self) -> None:
        chain = EngineChain([DummyEngine("espeak-ng", usable=False), DummyEngine("festival", usable=False)])
        with pytest.raises(BackendExhausted, match="espeak-ng, festival"):
            chain.activate(PARAMS)
        with pytest.raises(BackendExhausted):
            chain.active

    def test_demote_moves_to_next_engine(self) -> None:
        first = DummyEngine("espeak-ng")
        second = DummyEngine("festival")
        chain = EngineChain([first, second])
        chain.activate(PARAMS)
        assert chain.demote(first) is second
        assert chain.active is second

    def test_stale_demotion_is_ignored(self) -> None:
        first = DummyEngine("espeak-ng")
        second = DummyEngine("espeak")
        third = DummyEngine("festival")
        chain = EngineChain([first, second, third])
        chain.activate(PARAMS)
        chain.demote(first)
        # A second worker reporting the same failure must not skip "espeak".
        assert chain.demote(first) is second
        assert chain.active is second

    def test_demote_skips_engines_that_fail_probe(self) -> None:
        first = DummyEngine("espeak-ng")
        chain = EngineChain([first, DummyEngine("espeak", usable=False), DummyEngine("festival")])
        chain.activate(PARAMS)
        assert chain.demote(first).name == "festival"

    def test_active_stays_readable_while_probing_replacement(self) -> None:
        first = DummyEngine("espeak-ng")
        observer = ObservingEngine("festival")
        chain = EngineChain([first, observer])
        observer.chain = chain
        chain.activate(PARAMS)

        assert chain.demote(first) is observer
        assert observer.seen_during_probe == ["espeak-ng"]

    def test_demote_last_engine_exhausts(self) -> None:
        only = DummyEngine("espeak-ng")
        chain = EngineChain([only])
        chain.activate(PARAMS)
        with pytest.raises(BackendExhausted):
            chain.demote(only)
        with pytest.raises(BackendExhausted):
            chain.demote(only)


class TestBackendDiagnostics:
    def test_missing_everything(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(tts_factory.shutil, "which", lambda name: None)
        checks = backend_diagnostics(load_config(cwd=tmp_path))
        statuses = {check.name: check.status for check in checks}
        assert statuses["TTS espeak-ng"] == "WARN"
        assert statuses["TTS backend"] == "FAIL"
        assert statuses["Encoder"] == "FAIL"

    def test_encoder_falls_back_to_ffmpeg(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        available = {"espeak-ng", "ffmpeg"}
        monkeypatch.setattr(tts_factory.shutil, "which", lambda name: f"/usr/bin/{name}" if name in available else None)
        checks = backend_diagnostics(load_config(cwd=tmp_path))
        encoder = next(check for check in checks if check.name == "Encoder")
        assert encoder.status == "OK"
        assert "ffmpeg" in encoder.detail
        assert not any(check.status == "FAIL" for check in checks)

    def test_wav_needs_no_encoder(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(tts_factory.shutil, "which", lambda name: "/usr/bin/espeak-ng")
        config = load_config(cwd=tmp_path)
        config = replace(config, output=replace(config.output, format="wav"))
        encoder = next(check for check in backend_diagnostics(config) if check.name == "Encoder")
        assert encoder.status == "OK"
        assert "in-process" in encoder.detail


def test_diagnostics_ask_each_engine_if_installed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tts_factory.shutil, "which", lambda name: None)
    monkeypatch.setattr(FestivalEngine, "is_installed", lambda self: True)
    statuses = {check.name: check.status for check in backend_diagnostics(load_config(cwd=tmp_path))}
    assert statuses["TTS festival"] == "OK"
    assert statuses["TTS espeak-ng"] == "WARN"
    assert "TTS backend" not in statuses
