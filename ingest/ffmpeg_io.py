"""Shared helpers for building the ingest server's ffmpeg command line."""

from __future__ import annotations

from pathlib import Path

from ingest.config import IngestConfig

VIDEO_OUT_PAD = "[vout1]"
AUDIO_OUT_PAD = "[aout1]"
FADE_IN = "fade=in:st=0:d=0.5"
LOGO_LOOP = "loop=loop=-1:size=1:start=0"


def _num(value) -> str:
    """Render a filter option; whole floats lose their trailing '.0'."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def overlay_filter(config: IngestConfig) -> str:
    """Return the logo overlay fragment, or an empty string.

    The fragment splits the video chain on ``[v]``, loads the logo as a looping
    single-frame movie with the configured opacity and composites it back with
    the configured overlay expression. It is only emitted when a logo is
    enabled and the file actually exists.
    """

    if not (config.add_logo and config.logo and Path(config.logo).is_file()):
        return ""

    opacity = f"format=rgba,colorchannelmixer=aa={_num(config.logo_opacity)}"
    return (
        f"[v];movie={config.logo},{LOGO_LOOP},{opacity}"
        f"[l];[v][l]{config.logo_filter}:shortest=1"
    )


def audio_filter(config: IngestConfig) -> str:
    chain = ";[0:a]afade=in:st=0:d=0.5"

    if config.add_loudnorm:
        chain += f",loudnorm=I={_num(config.loud_i)}:TP={_num(config.loud_tp)}:LRA={_num(config.loud_lra)}"

    # Exact comparison: only a volume of precisely 1.0 is a bypass.
    if config.volume != 1.0:
        chain += f",volume={_num(config.volume)}"

    return chain + AUDIO_OUT_PAD


def video_filter(config: IngestConfig) -> str:
    chain = (
        f"[0:v]fps={_num(config.fps)},scale={config.width}:{config.height},"
        f"setdar=dar={_num(config.aspect)},{FADE_IN}"
    )
    return chain + overlay_filter(config) + VIDEO_OUT_PAD


def filter_graph(config: IngestConfig) -> str:
    return video_filter(config) + audio_filter(config)


def filter_args(config: IngestConfig) -> list[str]:
    """Return ``-filter_complex`` plus the maps for its two output pads."""

    return [
        "-filter_complex",
        filter_graph(config),
        "-map",
        VIDEO_OUT_PAD,
        "-map",
        AUDIO_OUT_PAD,
    ]


def server_command(config: IngestConfig, log_format: str) -> list[str]:
    """Return the full ffmpeg argument vector (without the binary).

    Ordering matters to ffmpeg: global flags, then the listen input, then the
    filter graph and its maps, then the output encoder settings.
    """

    cmd = ["-hide_banner", "-nostats", "-v", log_format]
    cmd.extend(config.input_cmd)
    cmd.extend(filter_args(config))
    cmd.extend(config.settings)
    return cmd
