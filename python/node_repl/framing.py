"""Request/response framing over the interpreter's standard streams.

Each request wraps the caller's code in an async function that writes the
sentinel bytes to stdout once the code has run, whether or not it threw.
The response is every stdout byte before the first sentinel occurrence.

The scanner is independent of process I/O so it can be driven by any byte
source, including a synthetic one in tests.
"""

from __future__ import annotations

import logging
from typing import Protocol

from node_repl.errors import UnexpectedEofError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
STOP_COMMAND = "queue.done()"


class ByteSource(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


def wrap_code(code: str, sentinel: bytes) -> bytes:
    """Build the bytes sent on stdin for one call."""
    sentinel_values = ", ".join(str(b) for b in sentinel)
    wrapped = (
        ";(async () => {\n"
        "try {\n"
        f"{code}\n"
        "} finally {\n"
        f"process.stdout.write(Buffer.from([{sentinel_values}]));\n"
        "}\n"
        "})();\n"
    )
    return wrapped.encode("utf-8")


class SentinelScanner:
    """Splits a byte stream into frames terminated by a sentinel.

    Bytes fed after a complete frame are kept and become the start of the
    next one.
    """

    def __init__(self, sentinel: bytes):
        if not sentinel:
            raise ValueError("sentinel must not be empty")
        self.sentinel = bytes(sentinel)
        self._buffer = bytearray()
        # Everything before this offset is known not to start a sentinel.
        self._search_from = 0

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet returned as part of a frame."""
        return bytes(self._buffer)

    def feed(self, data: bytes) -> bytes | None:
        """Add bytes; return a completed frame or None if none is complete."""
        self._buffer += data
        return self.next_frame()

    def next_frame(self) -> bytes | None:
        """Return the next frame from already buffered bytes, if complete."""
        index = self._buffer.find(self.sentinel, self._search_from)
        if index < 0:
            self._search_from = max(0, len(self._buffer) - len(self.sentinel) + 1)
            return None
        frame = bytes(self._buffer[:index])
        del self._buffer[: index + len(self.sentinel)]
        self._search_from = 0
        return frame

    def drain(self) -> bytes:
        """Return and forget everything buffered."""
        data = bytes(self._buffer)
        self.reset()
        return data

    def reset(self) -> None:
        self._buffer.clear()
        self._search_from = 0


async def read_frame(
    source: ByteSource,
    scanner: SentinelScanner,
    strict_eof: bool = True,
    chunk_size: int = READ_CHUNK_SIZE,
) -> bytes:
    """Read from source until the scanner yields a frame.

    If the source ends first, raise UnexpectedEofError carrying the partial
    output, or return the partial output as-is when strict_eof is False.
    """
    frame = scanner.next_frame()
    while frame is None:
        data = await source.read(chunk_size)
        if not data:
            partial = scanner.drain()
            if strict_eof:
                raise UnexpectedEofError(partial)
            logger.warning("Output ended before sentinel; returning %d partial bytes", len(partial))
            return partial
        frame = scanner.feed(data)
    return frame
