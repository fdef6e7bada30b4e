"""
Stderr drain thread for ffmpeg.

ffmpeg blocks once its stderr pipe fills, so every process we spawn gets one
of these threads for its whole lifetime. Lines are forwarded to logging with
the level taken from ffmpeg's ``level+`` prefix (``[error] ...``).
"""

from __future__ import annotations

import io
import logging
import threading
from typing import BinaryIO, Optional

_LEVEL_TAGS = (
    ("[fatal]", logging.ERROR),
    ("[error]", logging.ERROR),
    ("[warning]", logging.WARNING),
    ("[info]", logging.INFO),
)


def classify_line(line: str) -> tuple[int, str]:
    """Return (logging level, message without the level tag)."""
    for tag, level in _LEVEL_TAGS:
        idx = line.find(tag)
        if idx != -1:
            message = (line[:idx].rstrip() + " " + line[idx + len(tag):].lstrip()).strip()
            return level, message
    return logging.DEBUG, line.strip()


class StderrReader(threading.Thread):
    """Drain a byte stream line by line into the log, tagged with ``label``."""

    def __init__(self, stream: BinaryIO, label: str, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(name=f"stderr_reader[{label}]", daemon=True)
        self.stream = stream
        self.label = label
        self.error: Optional[BaseException] = None
        self.lines = 0
        self._log = logger or logging.getLogger("stderr_reader")

    def run(self) -> None:
        reader = self.stream
        if isinstance(reader, io.RawIOBase):
            reader = io.BufferedReader(reader)
        try:
            for raw in iter(reader.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line.strip():
                    continue
                level, message = classify_line(line)
                self._log.log(level, "[%s] %s", self.label, message)
                self.lines += 1
        except (OSError, ValueError) as exc:
            # ValueError: the pipe was closed underneath us during shutdown.
            self._log.debug("[%s] stderr read ended: %r", self.label, exc)
        except Exception as exc:  # noqa: BLE001 - reported via join_and_report()
            self.error = exc

    def join_and_report(self, timeout: Optional[float] = None) -> bool:
        """Join the thread and log (never raise) any failure. Returns success."""
        self.join(timeout=timeout)
        if self.is_alive():
            self._log.error("[%s] stderr reader did not finish within %ss", self.label, timeout)
            return False
        if self.error is not None:
            self._log.error("[%s] stderr reader failed: %r", self.label, self.error)
            return False
        return True
