#!/usr/bin/env python3
"""
Ingest server supervisor.

Runs ffmpeg in listen mode and forwards its stdout, chunk by chunk, to a
ChunkChannel. When the publisher disconnects ffmpeg exits; the supervisor
reaps it and immediately spawns a fresh listener, until termination is
requested through ProcessControl.

States:
  IDLE -> SPAWNING -> DRAINING -> AWAITING_EXIT -> RESTART_PENDING -> SPAWNING
                                               \\-> TERMINATED
"""

from __future__ import annotations

import enum
import logging
import subprocess
from typing import BinaryIO, Optional

from ingest.chunk_channel import CHUNK_SIZE, ChannelClosed, ChunkChannel, StreamChunk
from ingest.config import IngestConfig
from ingest.ffmpeg_io import server_command
from ingest.process_control import ProcessControl, ProcessControlError
from ingest.stderr_reader import StderrReader

FFMPEG_BIN = "ffmpeg"
STDERR_LABEL = "Server"

log = logging.getLogger("ingest_server")


class IngestSpawnError(RuntimeError):
    """ffmpeg could not be started at all (missing binary, permissions)."""


class IngestState(enum.Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    DRAINING = "draining"
    AWAITING_EXIT = "awaiting_exit"
    RESTART_PENDING = "restart_pending"
    TERMINATED = "terminated"


def _spawn_server(cmd: list[str]) -> subprocess.Popen:
    return subprocess.Popen(
        [FFMPEG_BIN, *cmd],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        bufsize=0,
    )


class IngestServer:
    def __init__(
        self,
        log_format: str,
        sender: ChunkChannel,
        proc_control: ProcessControl,
        config: Optional[IngestConfig] = None,
    ) -> None:
        self.log_format = log_format
        self.sender = sender
        self.proc_control = proc_control
        self.config = config if config is not None else IngestConfig.from_config()
        self.state = IngestState.IDLE
        self.restarts = 0
        self._buffer = bytearray(CHUNK_SIZE)

    def _set_state(self, state: IngestState) -> None:
        log.debug("ingest state %s -> %s", self.state.value, state.value)
        self.state = state

    def command(self) -> list[str]:
        return server_command(self.config, self.log_format)

    def run(self) -> None:
        cmd = self.command()
        listen_on = self.config.input_cmd[-1] if self.config.input_cmd else "?"
        log.info("Start ingest server, listening on: %s", listen_on)
        log.debug('Server CMD: "%s %s"', FFMPEG_BIN, " ".join(cmd))

        while True:
            proc = self._spawn(cmd)
            stderr_reader = StderrReader(proc.stderr, STDERR_LABEL)
            self.proc_control.set_process(proc)
            # A stop() that landed before the handle was installed found no process.
            if self.proc_control.is_terminated():
                self.proc_control.kill()
            stderr_reader.start()

            self._set_state(IngestState.DRAINING)
            try:
                self._drain(proc.stdout)
            except ChannelClosed as exc:
                log.error("Ingest server write error: %s", exc)
                self.proc_control.request_termination()
                self._abandon(proc, stderr_reader)
                self._set_state(IngestState.TERMINATED)
                return

            self._set_state(IngestState.AWAITING_EXIT)
            self._reap(proc, stderr_reader)

            if self.proc_control.is_terminated():
                self._set_state(IngestState.TERMINATED)
                log.info("Ingest server terminated")
                return

            self._set_state(IngestState.RESTART_PENDING)
            self.restarts += 1
            log.debug("Ingest server exited; relisting (restart #%d)", self.restarts)

    def _spawn(self, cmd: list[str]) -> subprocess.Popen:
        self._set_state(IngestState.SPAWNING)
        try:
            return _spawn_server(cmd)
        except OSError as exc:
            log.error("couldn't spawn ingest server: %s", exc)
            self.proc_control.request_termination()
            self._set_state(IngestState.TERMINATED)
            raise IngestSpawnError(f"couldn't spawn ingest server: {exc}") from exc

    def _drain(self, stdout: BinaryIO) -> None:
        """Forward stdout to the channel until EOF or a read error.

        ChannelClosed propagates to the caller.
        """
        buffer = self._buffer
        is_running = False

        try:
            while True:
                try:
                    length = stdout.readinto(buffer)
                except (OSError, ValueError) as exc:
                    log.debug("Ingest server read %r", exc)
                    break

                if not length:
                    break

                if not is_running:
                    self.proc_control.set_running(True)
                    is_running = True

                self.sender.send(StreamChunk(length, bytes(buffer[:length])))
        finally:
            self.proc_control.set_running(False)

    def _reap(self, proc: subprocess.Popen, stderr_reader: StderrReader) -> None:
        if proc.stdout is not None:
            proc.stdout.close()

        try:
            self.proc_control.wait()
        except ProcessControlError as exc:
            log.error("%s", exc)

        stderr_reader.join_and_report()
        if proc.stderr is not None:
            proc.stderr.close()

    def _abandon(self, proc: subprocess.Popen, stderr_reader: StderrReader) -> None:
        # Consumer is gone: nothing will read ffmpeg's output again.
        self.proc_control.kill()
        self._reap(proc, stderr_reader)


def run_ingest_server(
    log_format: str,
    sender: ChunkChannel,
    proc_control: ProcessControl,
    config: Optional[IngestConfig] = None,
) -> None:
    """Run the ingest supervisor until termination is requested.

    Returns normally on graceful termination (including a closed channel);
    raises IngestSpawnError when ffmpeg cannot be started.
    """
    IngestServer(log_format, sender, proc_control, config).run()
