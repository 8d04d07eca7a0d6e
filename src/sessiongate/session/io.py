"""Terminal I/O over an OpenApp stream.

The client stream is turned into a blocking stdin reader that also reports
the latest terminal size, and into writers that emit one response per
write. Responses go through a single-slot queue that the RPC handler
drains.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

import grpc

from sessiongate.backends.base import TerminalGeometry
from sessiongate.protocol import AppRequest, AppResponse

logger = logging.getLogger(__name__)

# Seconds between checks of the closed flag while blocked on a queue
POLL_INTERVAL = 0.1


class ProtocolError(Exception):
    """The client sent a malformed message."""

    pass


class ShortBufferError(BufferError):
    """A stdin chunk does not fit in the caller's buffer."""

    pass


@dataclass(frozen=True)
class Chunk:
    """One stdin chunk, exactly as the client sent it."""

    data: bytes


@dataclass(frozen=True)
class EndOfStream:
    """No more input. error is set if the receive loop failed."""

    error: Exception | None = None


ReadResult = Chunk | EndOfStream


class TerminalReader:
    """Blocking stdin reader fed by a background receive loop."""

    def __init__(
        self,
        requests: Iterator[AppRequest],
        size: TerminalGeometry,
        on_error: Callable[[], Any] | None = None,
    ) -> None:
        self._requests = requests
        self._size = size
        self._size_lock = threading.Lock()
        self._chunks: queue.Queue[ReadResult] = queue.Queue(maxsize=1)
        self._closed = threading.Event()
        self._end: EndOfStream | None = None
        self._error: Exception | None = None
        self._on_error = on_error
        self._thread = threading.Thread(
            target=self._loop,
            name="terminal-reader",
            daemon=True,
        )

    def start(self) -> TerminalReader:
        self._thread.start()
        return self

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Stop delivering input. Safe to call more than once."""
        self._closed.set()

    @property
    def error(self) -> Exception | None:
        """Why the receive loop stopped early, if it failed."""
        return self._error

    def terminal_size(self) -> TerminalGeometry | None:
        """Latest geometry reported by the client, None once closed."""
        if self._closed.is_set():
            return None
        with self._size_lock:
            return self._size

    def read_chunk(self) -> ReadResult:
        """Block until the next chunk or the end of the stream."""
        if self._end is not None:
            return self._end

        while not self._closed.is_set():
            try:
                item = self._chunks.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            if self._closed.is_set():
                break
            if isinstance(item, EndOfStream):
                self._end = item
            return item

        return EndOfStream()

    def read(self, size: int) -> bytes:
        """Return the next chunk, or b"" at the end of the stream.

        Chunks are never split across reads.

        Raises:
            ShortBufferError: If the next chunk is longer than size.
        """
        result = self.read_chunk()
        if isinstance(result, EndOfStream):
            return b""
        if len(result.data) > size:
            logger.error("buffer too small %d, %d", size, len(result.data))
            raise ShortBufferError(
                f"stdin chunk of {len(result.data)} bytes exceeds buffer of {size}"
            )
        return result.data

    def _put(self, item: ReadResult) -> bool:
        while not self._closed.is_set():
            try:
                self._chunks.put(item, timeout=POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def _loop(self) -> None:
        error: Exception | None = None
        try:
            for request in self._requests:
                if self._closed.is_set():
                    return
                if request.terminal_size is not None:
                    with self._size_lock:
                        self._size = request.terminal_size
                if not request.stdin:
                    continue
                if len(request.stdin) != 1:
                    raise ProtocolError(
                        f"expected one stdin chunk per message, got {len(request.stdin)}"
                    )
                if not self._put(Chunk(request.stdin[0])):
                    return
        except ProtocolError as e:
            logger.error("invalid input: %s", e)
            error = e
        except grpc.RpcError as e:
            logger.info("can't read stdin: %s", e)
            error = e

        if error is not None:
            self._error = error
            if self._on_error is not None:
                self._on_error()
        self._put(EndOfStream(error))


class OutputWriter:
    """Sends each write as one response on the stdout or stderr field."""

    def __init__(
        self,
        outbound: queue.Queue[AppResponse],
        closed: threading.Event,
        stream: str = "stdout",
    ) -> None:
        self._outbound = outbound
        self._closed = closed
        self._stream = stream

    def write(self, data: bytes) -> int:
        """Queue data as a single response and return its length.

        Raises:
            BrokenPipeError: If the client stream is gone.
        """
        message = AppResponse(**{self._stream: bytes(data)})
        while True:
            if self._closed.is_set():
                raise BrokenPipeError("client stream closed")
            try:
                self._outbound.put(message, timeout=POLL_INTERVAL)
                return len(data)
            except queue.Full:
                continue

    __call__ = write


class TerminalBridge:
    """Reader and writers attached to one OpenApp stream."""

    def __init__(
        self,
        requests: Iterator[AppRequest],
        size: TerminalGeometry,
        on_error: Callable[[], Any] | None = None,
    ) -> None:
        self._outbound: queue.Queue[AppResponse] = queue.Queue(maxsize=1)
        self._closed = threading.Event()
        self.reader = TerminalReader(requests, size, on_error)
        self.stdout = OutputWriter(self._outbound, self._closed, "stdout")
        self.stderr = OutputWriter(self._outbound, self._closed, "stderr")

    def start(self) -> TerminalBridge:
        self.reader.start()
        return self

    def responses(self, until: Future) -> Iterator[AppResponse]:
        """Yield queued responses until until is done and nothing is left."""
        while True:
            try:
                yield self._outbound.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if until.done() and self._outbound.empty():
                    return

    def close(self) -> None:
        self._closed.set()
        self.reader.close()
