"""Incremental error detection for image pull progress streams.

A pull reports progress as back-to-back JSON objects with no separator
between them, e.g. ``{"status":"Pulling fs layer","id":"a1"}{"status":...}``.
A failure shows up as an object carrying an ``error`` field. The stream is
decoded while it is still being written, so the outcome is known as soon
as the offending object is complete.
"""

import asyncio
import codecs
import json
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

from imginspect.core.exceptions import DecodeError, StreamError

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_SIZE = 64

# Consumed text is dropped from the buffer once it grows past this.
_COMPACT_THRESHOLD = 64 * 1024

_WHITESPACE = " \t\n\r"
_SCALAR_START = '"-0123456789tfn'

StatusCallback = Callable[[dict[str, Any]], None]


class StreamErrorDecoder:
    """Finds the first error in a stream of concatenated JSON values.

    The outcome is settled exactly once: the first error found (an embedded
    ``error`` field or a syntax failure), or ``None`` when the stream ends
    clean. Until then ``done`` is False.
    """

    def __init__(self, on_status: StatusCallback | None = None) -> None:
        self._json = json.JSONDecoder()
        self._text = codecs.getincrementaldecoder("utf-8")()
        self._on_status = on_status
        self._buffer = ""
        self._cursor = 0
        # framing state of the value starting at _value_start
        self._value_start = -1
        self._scan_pos = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._done = False
        self._error: StreamError | None = None

    @property
    def done(self) -> bool:
        return self._done

    @property
    def error(self) -> StreamError | None:
        return self._error

    def feed(self, chunk: bytes | str) -> StreamError | None:
        """Decode a chunk. Returns the error if this chunk revealed it."""
        if self._done:
            return None
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        try:
            self._buffer += self._text.decode(chunk)
        except UnicodeDecodeError as e:
            return self._settle(DecodeError(str(e)))
        self._decode_available(final=False)
        return self._error

    def close(self) -> StreamError | None:
        """Mark the end of the stream and return the outcome."""
        if self._done:
            return self._error
        try:
            self._buffer += self._text.decode(b"", final=True)
        except UnicodeDecodeError as e:
            return self._settle(DecodeError(str(e)))
        self._decode_available(final=True)
        if not self._done:
            self._settle(None)
        return self._error

    async def consume(self, chunks: AsyncIterator[bytes]) -> StreamError | None:
        """Decode chunks until the stream ends and return the outcome.

        The stream is drained to its end even after the outcome is settled,
        so the writer is never left blocked on a full channel.
        """
        async for chunk in chunks:
            self.feed(chunk)
        return self.close()

    def _settle(self, error: StreamError | None) -> StreamError | None:
        self._done = True
        self._error = error
        self._buffer = ""
        return error

    def _decode_available(self, final: bool) -> None:
        while not self._done:
            start = self._skip_whitespace()
            if start >= len(self._buffer):
                break
            if self._buffer[start] in "{[":
                end = self._find_container_end(start)
                if end is None and not final:
                    break
            elif not self._scalar_ready(start, final):
                break
            try:
                value, end = self._json.raw_decode(self._buffer, start)
            except json.JSONDecodeError as e:
                self._settle(DecodeError(str(e)))
                break
            self._cursor = end
            self._handle(value)
        self._compact()

    def _skip_whitespace(self) -> int:
        pos = self._cursor
        while pos < len(self._buffer) and self._buffer[pos] in _WHITESPACE:
            pos += 1
        self._cursor = pos
        return pos

    def _find_container_end(self, start: int) -> int | None:
        """Index just past the bracket closing the value at ``start``."""
        if self._value_start != start:
            self._value_start = start
            self._scan_pos = start
            self._depth = 0
            self._in_string = False
            self._escaped = False
        buf = self._buffer
        pos = self._scan_pos
        while pos < len(buf):
            ch = buf[pos]
            pos += 1
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch in "{[":
                self._depth += 1
            elif ch in "}]":
                self._depth -= 1
                if self._depth == 0:
                    self._value_start = -1
                    return pos
        self._scan_pos = pos
        return None

    def _scalar_ready(self, start: int, final: bool) -> bool:
        """Whether a top-level scalar can be decoded without more input."""
        if final or self._buffer[start] not in _SCALAR_START:
            return True
        try:
            _, end = self._json.raw_decode(self._buffer, start)
        except json.JSONDecodeError:
            return False
        # a number running up to the end of the buffer may still grow
        return end < len(self._buffer) or self._buffer[start] not in "-0123456789"

    def _handle(self, value: Any) -> None:
        if not isinstance(value, dict):
            return
        for key, field_value in value.items():
            if key.lower() == "error" and field_value:
                message = field_value if isinstance(field_value, str) else json.dumps(field_value)
                self._settle(StreamError(message))
                return
        if self._on_status is not None:
            try:
                self._on_status(value)
            except Exception:
                logger.exception("Pull status callback failed")

    def _compact(self) -> None:
        if self._cursor < _COMPACT_THRESHOLD:
            return
        self._buffer = self._buffer[self._cursor :]
        if self._value_start >= 0:
            self._value_start -= self._cursor
            self._scan_pos -= self._cursor
        self._cursor = 0


class ChunkChannel:
    """Bounded hand-off of byte chunks from a worker thread to the event loop.

    Must be created on the event loop that consumes it. Once the consumer
    calls ``shutdown`` further chunks are dropped and blocked writers are
    released.
    """

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put_threadsafe(self, chunk: bytes) -> None:
        """Send a chunk from a worker thread, blocking while the channel is full."""
        asyncio.run_coroutine_threadsafe(self.put(chunk), self._loop).result()

    def close_threadsafe(self) -> None:
        asyncio.run_coroutine_threadsafe(self.close(), self._loop).result()

    async def put(self, chunk: bytes) -> None:
        if not self._closed:
            await self._queue.put(chunk)

    async def close(self) -> None:
        if not self._closed:
            await self._queue.put(None)

    def shutdown(self) -> None:
        """Stop accepting chunks and discard the queued ones."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk


def _pump(stream: Iterable[bytes], channel: ChunkChannel) -> None:
    try:
        for chunk in stream:
            if channel.closed:
                break
            if chunk:
                channel.put_threadsafe(chunk)
    finally:
        channel.close_threadsafe()


async def decode_pull_stream(
    stream: Iterable[bytes],
    on_status: StatusCallback | None = None,
    channel_size: int = DEFAULT_CHANNEL_SIZE,
) -> StreamError | None:
    """Run a blocking progress stream through a decoder on the event loop.

    ``stream`` is iterated in a worker thread (the producer) while the
    decoder consumes the chunks concurrently. If the consumer stops early
    the producer is released instead of blocking on a full channel.

    Returns:
        The first error reported by the stream, or None
    """
    channel = ChunkChannel(channel_size)
    decoder = StreamErrorDecoder(on_status)
    consumer = asyncio.create_task(decoder.consume(channel))
    consumer.add_done_callback(lambda _: channel.shutdown())
    try:
        await asyncio.to_thread(_pump, stream, channel)
    except BaseException:
        consumer.cancel()
        raise
    return await consumer
