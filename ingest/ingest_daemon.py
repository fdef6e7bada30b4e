#!/usr/bin/env python3
"""
Ingest daemon: wires config, the chunk channel and the supervisor together.

- SIGINT/SIGTERM stop the supervisor (no restart) and kill the live ffmpeg
- A consumer thread writes every received chunk to the configured sink
- Exit status 1 when ffmpeg cannot be spawned at all
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import BinaryIO, Optional

from ingest.chunk_channel import ChunkChannel
from ingest.config import IngestConfig, ffmpeg_log_format, get_cfg
from ingest.ingest_server import IngestSpawnError, run_ingest_server
from ingest.process_control import ProcessControl
from ingest.status_server import StatusServerHandle, start_status_server_in_thread

log = logging.getLogger("ingest_daemon")


class ChunkSink(threading.Thread):
    """Consume the channel and write chunks to a binary stream (or discard)."""

    def __init__(self, channel: ChunkChannel, out: Optional[BinaryIO]) -> None:
        super().__init__(name="chunk_sink", daemon=True)
        self.channel = channel
        self.out = out
        self.bytes_written = 0
        self.chunks = 0

    def run(self) -> None:
        try:
            for chunk in self.channel:
                if self.out is not None:
                    self.out.write(chunk.data)
                    self.out.flush()
                self.bytes_written += chunk.length
                self.chunks += 1
        except (BrokenPipeError, OSError) as exc:
            log.error("output sink failed: %r", exc)
        finally:
            # Makes the supervisor's next send() fail and unwind.
            self.channel.close()


def install_signal_handlers(proc_control: ProcessControl) -> None:
    def handle_signal(signum, frame):  # noqa
        # Runs on the main thread, which may already hold the control lock.
        proc_control.request_termination()
        threading.Thread(target=proc_control.kill, name="ingest_kill", daemon=True).start()
        log.info("received signal %s, shutting down...", signum)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


def _open_output(path: Optional[str]) -> Optional[BinaryIO]:
    if not path:
        return None
    if path == "-":
        return sys.stdout.buffer
    return open(path, "ab")


def run(
    config: IngestConfig,
    out: Optional[BinaryIO] = None,
    *,
    status: bool = False,
    status_host: str = "127.0.0.1",
    status_port: int = 8787,
    proc_control: Optional[ProcessControl] = None,
) -> int:
    proc_control = proc_control or ProcessControl()
    channel = ChunkChannel(maxsize=config.channel_size)
    sink = ChunkSink(channel, out)
    sink.start()

    status_handle: Optional[StatusServerHandle] = None
    if status:
        try:
            status_handle = start_status_server_in_thread(proc_control, status_host, status_port)
        except OSError as exc:
            log.warning("status server unavailable on %s:%s: %s", status_host, status_port, exc)

    try:
        run_ingest_server(ffmpeg_log_format(config), channel, proc_control, config)
    except IngestSpawnError as exc:
        log.error("aborting: %s", exc)
        return 1
    finally:
        channel.close()
        sink.join(timeout=5.0)
        if status_handle is not None:
            status_handle.stop()

    log.info(
        "clean shutdown complete (%d chunks, %d bytes forwarded)",
        sink.chunks,
        sink.bytes_written,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="ffmpeg ingest server supervisor.")
    parser.add_argument(
        "--output",
        default=None,
        help="Write the ingested stream here ('-' for stdout). Default: discard.",
    )
    parser.add_argument("--log-level", default=None, help="Python logging level (default: INFO).")
    parser.add_argument(
        "--status",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Serve the HTTP status/stop endpoint (defaults to config).",
    )
    args = parser.parse_args(argv)

    cfg = get_cfg()
    log_level = args.log_level
    if log_level is None:
        log_level = "DEBUG" if cfg.get("logging", {}).get("dev_mode") else "INFO"
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )

    config = IngestConfig.from_config(cfg)
    status_cfg = cfg.get("status_server", {})
    status = args.status if args.status is not None else bool(status_cfg.get("enabled", False))

    proc_control = ProcessControl()
    install_signal_handlers(proc_control)

    out = _open_output(args.output)
    try:
        return run(
            config,
            out,
            status=status,
            status_host=str(status_cfg.get("listen_host", "127.0.0.1")),
            status_port=int(status_cfg.get("listen_port", 8787)),
            proc_control=proc_control,
        )
    finally:
        if out is not None and out is not sys.stdout.buffer:
            out.close()


if __name__ == "__main__":
    raise SystemExit(main())
