#!/usr/bin/env python3
"""
Unified configuration loader for the ingest server.

Load order (first found wins):
  1) INGEST_CONFIG (env, absolute or relative to CWD)
  2) /etc/stream-ingest/config.yaml
  3) <project_root>/config.yaml (derived from this file's location)
  4) <script_dir>/config.yaml (directory of the running script)
  5) ./config.yaml (current working directory)

Environment variables override file values when present.
"""
from __future__ import annotations
import copy
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence

import yaml

_DEFAULTS: Dict[str, Any] = {
    "ingest": {
        "input_cmd": [
            "-f", "live_flv",
            "-listen", "1",
            "-i", "rtmp://127.0.0.1:1936/live/stream",
        ],
        "channel_size": 64,
    },
    "processing": {
        "fps": 25,
        "width": 1024,
        "height": 576,
        "aspect": 1.778,
        "add_logo": False,
        "logo": "",
        "logo_opacity": 0.7,
        "logo_filter": "overlay=W-w-12:12",
        "add_loudnorm": False,
        "loud_i": -18.0,
        "loud_tp": -1.5,
        "loud_lra": 11.0,
        "volume": 1.0,
        "settings": None,  # None -> MPEG-TS on stdout, see default_output_settings()
    },
    "logging": {
        "ffmpeg_level": "error",
        "dev_mode": False,  # if True or ENV DEV=1, enable verbose debug
    },
    "status_server": {
        "enabled": False,
        "listen_host": "127.0.0.1",
        "listen_port": 8787,
    },
}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None

log = logging.getLogger("config")


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        log.warning("ignoring unreadable config %s: %s", path, exc)
        return {}
    if isinstance(data, dict):
        return data
    log.warning("ignoring config %s: top level is not a mapping", path)
    return {}


def _candidate_search_paths(project_root: Path, script_dir: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("INGEST_CONFIG")
    if env_cfg:
        search.append(Path(env_cfg).expanduser().resolve())
    search.extend(
        [
            Path("/etc/stream-ingest/config.yaml"),
            project_root / "config.yaml",
            script_dir / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        resolved = candidate.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    # DEV mode
    if os.getenv("DEV") == "1":
        cfg.setdefault("logging", {})["dev_mode"] = True
    if "INGEST_LISTEN_URL" in os.environ:
        url = os.environ["INGEST_LISTEN_URL"].strip()
        ingest_section = cfg.setdefault("ingest", {})
        input_cmd = list(ingest_section.get("input_cmd") or [])
        if url:
            if input_cmd:
                input_cmd[-1] = url
            else:
                input_cmd = ["-listen", "1", "-i", url]
            ingest_section["input_cmd"] = input_cmd
    if "INGEST_FFMPEG_LOG_LEVEL" in os.environ:
        level = os.environ["INGEST_FFMPEG_LOG_LEVEL"].strip()
        if level:
            cfg.setdefault("logging", {})["ffmpeg_level"] = level
    if "INGEST_VOLUME" in os.environ:
        try:
            cfg.setdefault("processing", {})["volume"] = float(os.environ["INGEST_VOLUME"])
        except ValueError:
            pass
    if "INGEST_STATUS_PORT" in os.environ:
        try:
            cfg.setdefault("status_server", {})["listen_port"] = int(os.environ["INGEST_STATUS_PORT"])
        except ValueError:
            pass


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    # Derive project root relative to this file (ingest/ -> project root)
    project_root = Path(__file__).resolve().parent.parent
    script_dir = Path(sys.argv[0]).resolve().parent if sys.argv and sys.argv[0] else Path.cwd()

    search = _candidate_search_paths(project_root, script_dir)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        try:
            if candidate.exists():
                active = candidate
                break
        except OSError:
            pass

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active

    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def active_config_path() -> Path | None:
    if _cfg_cache is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    if not _search_paths:
        get_cfg()
    return list(_search_paths)


def default_output_settings(fps: Any) -> list[str]:
    """Encoder settings used when ``processing.settings`` is not configured.

    Produces an intra-only MPEG-2 / SMPTE 302M transport stream on stdout,
    which is cheap to decode and safe to cut at any chunk boundary.
    """

    return [
        "-pix_fmt", "yuv420p",
        "-r", str(fps),
        "-c:v", "mpeg2video",
        "-g", "1",
        "-b:v", "50000k",
        "-minrate", "50000k",
        "-maxrate", "50000k",
        "-bufsize", "25000k",
        "-c:a", "s302m",
        "-strict", "-2",
        "-sample_fmt", "s16",
        "-ar", "48000",
        "-ac", "2",
        "-f", "mpegts",
        "-",
    ]


def _string_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, (str, bytes)):
        return (str(value),)
    if isinstance(value, Sequence):
        return tuple(str(entry) for entry in value)
    return ()


@dataclass(frozen=True)
class IngestConfig:
    """Read-only snapshot of everything the ingest server needs."""

    input_cmd: tuple[str, ...]
    settings: tuple[str, ...]
    fps: float
    width: int
    height: int
    aspect: float
    add_logo: bool
    logo: str
    logo_opacity: float
    logo_filter: str
    add_loudnorm: bool
    loud_i: float
    loud_tp: float
    loud_lra: float
    volume: float
    ffmpeg_level: str
    channel_size: int

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any] | None = None) -> "IngestConfig":
        if cfg is None:
            cfg = get_cfg()
        ingest_cfg = _deep_merge(_DEFAULTS["ingest"], dict(cfg.get("ingest") or {}))
        proc_cfg = _deep_merge(_DEFAULTS["processing"], dict(cfg.get("processing") or {}))
        log_cfg = _deep_merge(_DEFAULTS["logging"], dict(cfg.get("logging") or {}))

        fps = proc_cfg["fps"]
        settings = proc_cfg.get("settings")
        if not settings:
            settings = default_output_settings(fps)

        return cls(
            input_cmd=_string_tuple(ingest_cfg.get("input_cmd")),
            settings=_string_tuple(settings),
            fps=fps,
            width=int(proc_cfg["width"]),
            height=int(proc_cfg["height"]),
            aspect=proc_cfg["aspect"],
            add_logo=bool(proc_cfg["add_logo"]),
            logo=str(proc_cfg["logo"] or ""),
            logo_opacity=proc_cfg["logo_opacity"],
            logo_filter=str(proc_cfg["logo_filter"]),
            add_loudnorm=bool(proc_cfg["add_loudnorm"]),
            loud_i=proc_cfg["loud_i"],
            loud_tp=proc_cfg["loud_tp"],
            loud_lra=proc_cfg["loud_lra"],
            volume=float(proc_cfg["volume"]),
            ffmpeg_level=str(log_cfg["ffmpeg_level"]),
            channel_size=max(1, int(ingest_cfg.get("channel_size", 64))),
        )


def ffmpeg_log_format(config: IngestConfig) -> str:
    """Verbosity argument for ``-v``; ``level+`` makes ffmpeg tag each line."""
    return f"level+{config.ffmpeg_level}"
