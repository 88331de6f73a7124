"""Byte budgets for streamed payloads.

A ``git push`` body can be sent with chunked transfer encoding, so a
Content-Length check alone does not bound it. ``StreamSizeCounter`` sits in
the stream itself and aborts it the moment the budget is exceeded.

Usage:
    counter = StreamSizeCounter(max_size=10 * 1024 * 1024, operation_name="git-receive-pack")
    async for chunk in counter.pipe(request.stream()):
        ...
"""

import logging
from typing import AsyncIterable, AsyncIterator, Callable, Optional

from repostore.metrics import StorageMetrics
from repostore.storage.errors import PayloadTooLargeError
from repostore.utils import format_bytes

logger = logging.getLogger(__name__)

DEFAULT_RECEIVE_PACK_MAX_SIZE = 500 * 1024 * 1024
DEFAULT_UPLOAD_PACK_MAX_SIZE = 10 * 1024 * 1024


class StreamSizeCounter:
    """Count the bytes of one stream and enforce its byte budget.

    One instance per stream; never share a counter between streams.
    """

    def __init__(
        self,
        max_size: int,
        operation_name: str,
        on_limit_exceeded: Optional[Callable[[int], None]] = None,
        metrics: Optional[StorageMetrics] = None,
        on_error: Optional[Callable[[PayloadTooLargeError], None]] = None,
    ):
        """Initialize the counter.

        Args:
            max_size: Maximum number of bytes the stream may deliver
            operation_name: Name used in log and error messages
            on_limit_exceeded: Called once with the byte count when the budget
                               is first exceeded, e.g. to drop the connection
            metrics: Optional metrics aggregator
            on_error: Called once with the error before it is first raised
        """
        if max_size < 0:
            raise ValueError("max_size must not be negative")
        self.max_size = max_size
        self.operation_name = operation_name
        self._on_limit_exceeded = on_limit_exceeded
        self._metrics = metrics
        self._on_error = on_error
        self._bytes_received = 0
        self._error: Optional[PayloadTooLargeError] = None

    @property
    def limit_exceeded(self) -> bool:
        return self._error is not None

    def get_bytes_received(self) -> int:
        """Return the bytes observed so far, the rejected chunk included."""
        return self._bytes_received

    def feed(self, chunk: bytes) -> bytes:
        """Account for one chunk and return it if the budget still holds.

        Raises:
            PayloadTooLargeError: On the chunk that exceeds the budget and on
                                  every call after it.
        """
        if self._error is not None:
            raise self._error

        self._bytes_received += len(chunk)
        if self._bytes_received <= self.max_size:
            if self._metrics is not None:
                self._metrics.record_stream_bytes(self.operation_name, len(chunk))
            return chunk

        self._error = PayloadTooLargeError(
            self.operation_name, self.max_size, self._bytes_received
        )
        logger.warning(
            "%s: Size limit exceeded - %s > %s",
            self.operation_name,
            format_bytes(self._bytes_received),
            format_bytes(self.max_size),
        )
        if self._metrics is not None:
            self._metrics.record_payload_rejection(self.operation_name)
        if self._on_limit_exceeded is not None:
            self._on_limit_exceeded(self._bytes_received)
        if self._on_error is not None:
            self._on_error(self._error)
        raise self._error

    async def pipe(self, source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        """Forward chunks from ``source`` until the budget is exceeded."""
        async for chunk in source:
            yield self.feed(chunk)


def create_stream_size_counter(
    max_size: int,
    operation_name: str,
    on_limit_exceeded: Optional[Callable[[int], None]] = None,
    on_error: Optional[Callable[[PayloadTooLargeError], None]] = None,
    metrics: Optional[StorageMetrics] = None,
) -> StreamSizeCounter:
    """Create a stream size counter with standard error handling.

    ``on_error`` is called with the ``PayloadTooLargeError`` before it
    propagates to the reader of the stream.
    """
    return StreamSizeCounter(
        max_size,
        operation_name,
        on_limit_exceeded=on_limit_exceeded,
        metrics=metrics,
        on_error=on_error,
    )


async def read_limited(
    source: AsyncIterable[bytes],
    max_size: int,
    operation_name: str,
    metrics: Optional[StorageMetrics] = None,
) -> bytes:
    """Read a whole stream into memory within a byte budget."""
    counter = StreamSizeCounter(max_size, operation_name, metrics=metrics)
    chunks = []
    async for chunk in counter.pipe(source):
        chunks.append(chunk)
    return b"".join(chunks)
