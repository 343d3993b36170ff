"""Readiness detection on a child's standard output.

mongod has no structured startup handshake. It is ready once it logs
``waiting for connections on port``, so the watcher scans the raw byte
stream for that marker. Chunks arrive in whatever sizes the pipe delivers,
so the marker may be split across writes; only the longest suffix of the
data seen so far that is also a prefix of the marker is carried over.
"""

import threading
from typing import BinaryIO, Optional, Protocol

from ..core.log import get_logger

logger = get_logger(__name__)

READINESS_MARKER = b"waiting for connections on port"


class ByteSink(Protocol):
    """Secondary destination for forwarded output."""

    def write(self, data: bytes) -> int:
        """Write bytes."""


class ReadinessWatcher:
    """Writable byte sink that resolves ``wait()`` once the marker is seen.

    Writes never block and keep being forwarded to ``sink`` after the marker
    was found, so the child never stalls on a full pipe.
    """

    def __init__(
        self, marker: bytes = READINESS_MARKER, sink: Optional[ByteSink] = None
    ) -> None:
        if not marker:
            raise ValueError("Readiness marker must not be empty")
        self._marker = bytes(marker)
        self._sink = sink
        self._tail = b""
        self._found = False
        self._closed = False
        self._cond = threading.Condition()

    @property
    def marker(self) -> bytes:
        return self._marker

    @property
    def found(self) -> bool:
        with self._cond:
            return self._found

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def write(self, data: bytes) -> int:
        """Scan a chunk for the marker and forward it to the sink."""
        data = bytes(data)
        with self._cond:
            if not self._found and data:
                window = self._tail + data
                if self._marker in window:
                    self._found = True
                    self._tail = b""
                    self._cond.notify_all()
                else:
                    self._tail = self._partial_match(window)
        self._forward(data)
        return len(data)

    def close(self) -> None:
        """Mark end of stream and wake waiters, found or not."""
        with self._cond:
            self._closed = True
            self._tail = b""
            self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the marker has appeared.

        With no timeout this blocks until the marker shows up or the stream
        is closed. Returns whether the marker was seen.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._found or self._closed, timeout)
            return self._found

    def pump(self, stream: BinaryIO, chunk_size: int = 4096) -> None:
        """Copy ``stream`` into the watcher until EOF, then close the watcher."""
        read = getattr(stream, "read1", None) or stream.read
        try:
            while True:
                chunk = read(chunk_size)
                if not chunk:
                    break
                self.write(chunk)
        except (OSError, ValueError) as e:
            logger.debug("Output stream ended with error: %s", e)
        finally:
            self.close()

    def watch(self, stream: BinaryIO, name: Optional[str] = None) -> threading.Thread:
        """Start a daemon thread pumping ``stream`` into the watcher."""
        thread = threading.Thread(
            target=self.pump, args=(stream,), name=name or "ReadinessWatcher", daemon=True
        )
        thread.start()
        return thread

    def _partial_match(self, window: bytes) -> bytes:
        """Longest suffix of ``window`` that is a proper prefix of the marker."""
        longest = min(len(self._marker) - 1, len(window))
        for size in range(longest, 0, -1):
            if window.endswith(self._marker[:size]):
                return window[-size:]
        return b""

    def _forward(self, data: bytes) -> None:
        sink = self._sink
        if sink is None or not data:
            return
        try:
            sink.write(data)
            flush = getattr(sink, "flush", None)
            if flush:
                flush()
        except (OSError, ValueError) as e:
            logger.debug("Dropping output sink after write failure: %s", e)
            self._sink = None
