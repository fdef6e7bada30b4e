"""Tests covering config file loading, environment overrides and the snapshot."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from ingest import config as config_module
from ingest.config import IngestConfig, ffmpeg_log_format


def _reset_config_state(monkeypatch) -> None:
    monkeypatch.setattr(config_module, "_cfg_cache", None, raising=False)
    monkeypatch.setattr(config_module, "_search_paths", [], raising=False)
    monkeypatch.setattr(config_module, "_active_config_path", None, raising=False)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in (
        "INGEST_LISTEN_URL",
        "INGEST_FFMPEG_LOG_LEVEL",
        "INGEST_VOLUME",
        "INGEST_STATUS_PORT",
        "DEV",
    ):
        monkeypatch.delenv(name, raising=False)
    _reset_config_state(monkeypatch)
    yield
    _reset_config_state(monkeypatch)


def test_yaml_file_overrides_defaults(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "processing:\n"
        "  width: 1920\n"
        "  height: 1080\n"
        "  add_loudnorm: true\n"
        "logging:\n"
        "  ffmpeg_level: warning\n"
    )
    monkeypatch.setenv("INGEST_CONFIG", str(config_path))

    cfg = config_module.get_cfg()

    assert cfg["processing"]["width"] == 1920
    assert cfg["processing"]["height"] == 1080
    assert cfg["processing"]["add_loudnorm"] is True
    # untouched keys keep their defaults
    assert cfg["processing"]["fps"] == 25
    assert config_module.active_config_path() == config_path.resolve()
    assert config_path.resolve() in config_module.search_paths()


def test_malformed_yaml_falls_back_to_defaults(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("processing: [unclosed\n")
    monkeypatch.setenv("INGEST_CONFIG", str(config_path))

    cfg = config_module.get_cfg()

    assert cfg["processing"]["width"] == 1024


def test_env_overrides(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("ingest:\n  input_cmd: [-listen, '1', -i, 'rtmp://a/live/x']\n")
    monkeypatch.setenv("INGEST_CONFIG", str(config_path))
    monkeypatch.setenv("INGEST_LISTEN_URL", "rtmp://0.0.0.0:1935/live/stream")
    monkeypatch.setenv("INGEST_FFMPEG_LOG_LEVEL", "info")
    monkeypatch.setenv("INGEST_VOLUME", "0.5")
    monkeypatch.setenv("INGEST_STATUS_PORT", "9999")
    monkeypatch.setenv("DEV", "1")

    cfg = config_module.get_cfg()

    assert cfg["ingest"]["input_cmd"] == ["-listen", "1", "-i", "rtmp://0.0.0.0:1935/live/stream"]
    assert cfg["logging"]["ffmpeg_level"] == "info"
    assert cfg["logging"]["dev_mode"] is True
    assert cfg["processing"]["volume"] == 0.5
    assert cfg["status_server"]["listen_port"] == 9999


def test_invalid_numeric_env_is_ignored(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("INGEST_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("INGEST_VOLUME", "loud")

    cfg = config_module.get_cfg()

    assert cfg["processing"]["volume"] == 1.0


def test_snapshot_is_frozen_and_fills_settings() -> None:
    snapshot = IngestConfig.from_config({"processing": {"fps": 30}})

    assert snapshot.fps == 30
    assert snapshot.input_cmd[-1] == "rtmp://127.0.0.1:1936/live/stream"
    settings = list(snapshot.settings)
    assert settings[settings.index("-r") + 1] == "30"
    assert settings[-1] == "-"
    assert ffmpeg_log_format(snapshot) == "level+error"

    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.volume = 2.0  # type: ignore[misc]


def test_snapshot_keeps_configured_settings() -> None:
    snapshot = IngestConfig.from_config(
        {"processing": {"settings": ["-c:v", "libx264", "-f", "mpegts", "-"]}}
    )
    assert snapshot.settings == ("-c:v", "libx264", "-f", "mpegts", "-")
