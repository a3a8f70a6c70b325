from __future__ import annotations

from pathlib import Path

import pytest

from audiobook_converter.config import apply_overrides, config_summary, load_config, write_default_config


def test_load_config_defaults(tmp_path: Path) -> None:
    config = load_config(cwd=tmp_path)
    assert config.source is None
    assert config.paths.epubs == tmp_path / "epubs"
    assert config.paths.out == tmp_path / "out"
    assert config.paths.cache == tmp_path / "cache"
    assert config.paths.logs == tmp_path / "logs"
    assert config.paths.errors == tmp_path / "logs" / "errors"
    assert config.logging.level == "INFO"
    assert config.tts.engines == ("espeak-ng", "espeak", "festival")
    assert config.tts.sample_rate == 22050
    assert config.tts.channels == 1
    assert config.tts.max_chars == 1000
    assert config.tts.max_attempts == 2
    assert config.output.format == "vorbis"
    assert config.output.quality == pytest.approx(0.7)
    assert config.cache.enabled is True


def test_load_config_overrides(tmp_path: Path) -> None:
    config_dir = tmp_path / "cfg"
    config_dir.mkdir()
    config_path = config_dir / "config.toml"
    config_path.write_text(
        """
[paths]
epubs = "input"
[logging]
level = "debug"
console_level = "warning"
[tts]
engines = ["festival", "espeak-ng"]
voice = "en-us"
speed = 1.25
workers = 3
[output]
format = "FLAC"
quality = 0.5
[cache]
max_entries = 0
""".lstrip()
    )

    config = load_config(config_path, cwd=tmp_path)
    assert config.source == config_path
    assert config.paths.epubs == config_dir / "input"
    assert config.logging.level == "DEBUG"
    assert config.logging.console_level == "WARNING"
    # Preference order is fixed regardless of how the list is written.
    assert config.tts.engines == ("espeak-ng", "festival")
    assert config.tts.voice == "en-us"
    assert config.tts.speed == pytest.approx(1.25)
    assert config.tts.workers == 3
    assert config.output.format == "flac"
    assert config.cache.max_entries is None


def test_missing_config_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.toml", cwd=tmp_path)


@pytest.mark.parametrize(
    "body",
    [
        '[output]\nformat = "aac"\n',
        "[output]\nquality = 1.5\n",
        "[tts]\nspeed = 0\n",
        "[tts]\nworkers = -1\n",
        '[tts]\nengines = ["say"]\n',
        "[tts]\nsample_rate = 0\n",
        "[tts]\nchannels = 2\n",
        "[tts]\nsample_rate = 16000\n",
    ],
)
def test_invalid_config_raises_value_error(tmp_path: Path, body: str) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(body)
    with pytest.raises(ValueError):
        load_config(config_path, cwd=tmp_path)


def test_festival_only_may_change_sample_rate(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('[tts]\nengines = ["festival"]\nsample_rate = 16000\n')
    config = load_config(config_path, cwd=tmp_path)
    assert config.tts.sample_rate == 16000


def test_espeak_rate_mismatch_names_the_fix(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('[tts]\nengines = ["espeak-ng"]\nsample_rate = 44100\n')
    with pytest.raises(ValueError, match="espeak-ng only produce 22050 Hz"):
        load_config(config_path, cwd=tmp_path)


def test_apply_overrides_revalidates(tmp_path: Path) -> None:
    config = load_config(cwd=tmp_path)
    updated = apply_overrides(config, output_format="MP3", quality=0.2, workers=2, cache_enabled=False)
    assert updated.output.format == "mp3"
    assert updated.output.quality == pytest.approx(0.2)
    assert updated.tts.workers == 2
    assert updated.cache.enabled is False
    assert config.output.format == "vorbis"

    with pytest.raises(ValueError):
        apply_overrides(config, quality=2.0)


def test_default_config_file_round_trips(tmp_path: Path) -> None:
    path = write_default_config(tmp_path / "config.toml")
    config = load_config(path, cwd=tmp_path)
    defaults = load_config(cwd=tmp_path / "elsewhere")
    assert config.tts == defaults.tts
    assert config.output == defaults.output
    assert "format: vorbis" in config_summary(config)
