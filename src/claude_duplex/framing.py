from __future__ import annotations

from typing import Any

import anyio
import msgspec
from anyio.abc import ByteReceiveStream
from anyio.streams.buffered import BufferedByteReceiveStream

from .errors import CLIJSONDecodeError, MessageTooLargeError
from .logging import get_logger, log_pipeline
from .settings import DEFAULT_MAX_BUFFER_SIZE

logger = get_logger(__name__)


class JsonLineReader:
    """Turns a byte stream of newline-delimited JSON into decoded values.

    One JSON document may span several physical lines; fragments are
    accumulated until they parse. ``receive()`` keeps every byte it has
    already read when cancelled, so a caller may time out and retry.
    """

    def __init__(
        self,
        stream: ByteReceiveStream,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
    ) -> None:
        self._buffered = BufferedByteReceiveStream(stream)
        self._max_buffer_size = max_buffer_size
        self._pending = ""
        self._eof = False
        self._failure: Exception | None = None

    @property
    def max_buffer_size(self) -> int:
        return self._max_buffer_size

    async def receive(self) -> Any:
        if self._failure is not None:
            raise self._failure
        while True:
            line = await self._next_line()
            if line is None:
                return self._finish()
            line = line.strip()
            if not line:
                continue
            value = self._accumulate(line)
            if value is not _INCOMPLETE:
                return value

    def __aiter__(self) -> JsonLineReader:
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.receive()
        except anyio.EndOfStream:
            raise StopAsyncIteration from None

    async def _next_line(self) -> str | None:
        if self._eof:
            return None
        try:
            raw = await self._buffered.receive_until(
                b"\n", self._max_buffer_size + 1
            )
        except anyio.DelimiterNotFound:
            size = len(self._buffered.buffer)
            raise self._fail(MessageTooLargeError(self._max_buffer_size, size))
        except anyio.IncompleteRead:
            # Trailing data without a final newline is still a line.
            self._eof = True
            raw = self._buffered.buffer
            if not raw:
                return None
            await self._drop_tail()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise self._fail(
                CLIJSONDecodeError(
                    f"Invalid UTF-8 in CLI output: {exc}",
                    line=raw[:200].decode("utf-8", errors="backslashreplace"),
                )
            ) from exc

    async def _drop_tail(self) -> None:
        await self._buffered.receive_exactly(len(self._buffered.buffer))

    def _accumulate(self, line: str) -> Any:
        self._pending += line
        size = len(self._pending.encode("utf-8"))
        if size > self._max_buffer_size:
            self._pending = ""
            raise self._fail(MessageTooLargeError(self._max_buffer_size, size))
        try:
            value = msgspec.json.decode(self._pending)
        except msgspec.DecodeError:
            log_pipeline(logger, "framing.partial", buffered=size)
            return _INCOMPLETE
        self._pending = ""
        return value

    def _finish(self) -> Any:
        if self._pending:
            leftover, self._pending = self._pending, ""
            raise self._fail(
                CLIJSONDecodeError(
                    "Failed to decode JSON at end of stream", line=leftover[:200]
                )
            )
        raise anyio.EndOfStream

    def _fail(self, exc: Exception) -> Exception:
        self._failure = exc
        logger.error(
            "framing.failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        return exc


_INCOMPLETE = object()
