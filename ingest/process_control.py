"""
Shared control block for the ingest server process.

The supervisor thread installs the live ffmpeg handle here after each spawn and
reaps it through wait(); shutdown paths (signal handlers, the status server)
use stop()/kill() from other threads. The handle is never handed out: callers
only get the pid and the two flags.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from typing import Optional


class ProcessControlError(RuntimeError):
    """Raised when the held process cannot be waited on."""


class ProcessControl:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._running = threading.Event()
        self._terminated = threading.Event()
        self._log = logging.getLogger("process_control")

    # --- Handle slot ---
    def set_process(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._proc = proc

    def clear_process(self) -> None:
        with self._lock:
            self._proc = None

    def has_process(self) -> bool:
        with self._lock:
            return self._proc is not None

    def pid(self) -> Optional[int]:
        with self._lock:
            return self._proc.pid if self._proc is not None else None

    # --- Flags ---
    def is_running(self) -> bool:
        return self._running.is_set()

    def set_running(self, value: bool) -> None:
        if value:
            self._running.set()
        else:
            self._running.clear()

    def request_termination(self) -> None:
        self._terminated.set()

    def is_terminated(self) -> bool:
        return self._terminated.is_set()

    # --- Process operations ---
    def wait(self, unit: str = "ingest") -> int:
        """Block until the held process exits, reap it and clear the slot.

        The wait happens outside the lock so kill() from another thread can
        still reach the process while we are blocked here.
        """
        with self._lock:
            proc = self._proc
        if proc is None:
            raise ProcessControlError(f"{unit}: no process to wait for")

        try:
            returncode = proc.wait()
        except OSError as exc:
            raise ProcessControlError(f"{unit}: wait failed: {exc}") from exc

        with self._lock:
            if self._proc is proc:
                self._proc = None
        self._log.debug("%s process %s exited rc=%s", unit, proc.pid, returncode)
        return returncode

    def kill(self, unit: str = "ingest") -> bool:
        """Kill the held process if it is still alive; return True if signalled."""
        with self._lock:
            proc = self._proc
            if proc is None or proc.poll() is not None:
                return False
            try:
                proc.kill()
            except ProcessLookupError:
                return False
        self._log.info("%s process %s killed", unit, proc.pid)
        return True

    def stop(self) -> bool:
        """Request termination and kill the current process, if any."""
        self.request_termination()
        return self.kill()
