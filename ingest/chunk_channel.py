"""Bounded hand-off between the ingest reader and its consumer."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

CHUNK_SIZE = 65088
_POLL_INTERVAL = 0.05


class ChannelClosed(Exception):
    """Raised by send() once the receiving side has closed the channel."""


@dataclass(frozen=True)
class StreamChunk:
    length: int
    data: bytes


class ChunkChannel:
    """FIFO of StreamChunks with a fixed capacity.

    send() blocks while the channel is full, which throttles the reader to the
    consumer's pace. Closing is done by the consumer and wakes a blocked sender.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._q: "queue.Queue[StreamChunk]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    def send(self, chunk: StreamChunk) -> None:
        while True:
            if self._closed.is_set():
                raise ChannelClosed("chunk channel is closed")
            try:
                self._q.put(chunk, timeout=_POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def recv(self, timeout: Optional[float] = None) -> Optional[StreamChunk]:
        """Return the next chunk, or None on timeout or once closed and empty."""
        if timeout is not None:
            timeout = max(0.0, timeout)
        deadline_wait = _POLL_INTERVAL if timeout is None else min(timeout, _POLL_INTERVAL)
        waited = 0.0
        while True:
            try:
                return self._q.get(timeout=deadline_wait)
            except queue.Empty:
                if self._closed.is_set():
                    return None
                waited += deadline_wait
                if timeout is not None and waited >= timeout:
                    return None

    def qsize(self) -> int:
        return self._q.qsize()

    def __iter__(self) -> Iterator[StreamChunk]:
        while True:
            chunk = self.recv()
            if chunk is None:
                return
            yield chunk
