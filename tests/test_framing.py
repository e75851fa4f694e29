from __future__ import annotations

from collections import deque
from typing import Any

import anyio
import pytest
from anyio.abc import ByteReceiveStream

from claude_duplex.errors import CLIJSONDecodeError, MessageTooLargeError
from claude_duplex.framing import JsonLineReader


class ChunkStream(ByteReceiveStream):
    """Delivers pre-split chunks, one per ``receive()``."""

    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = deque(chunks)

    async def receive(self, max_bytes: int = 65536) -> bytes:
        if not self._chunks:
            raise anyio.EndOfStream
        return self._chunks.popleft()

    async def aclose(self) -> None:
        self._chunks.clear()


async def _collect(chunks: list[bytes], max_buffer_size: int = 1024 * 1024) -> list[Any]:
    reader = JsonLineReader(ChunkStream(chunks), max_buffer_size)
    return [value async for value in reader]


DOCUMENT = b'{"type":"assistant","message":{"content":[{"type":"text","text":"h\xc3\xa9llo"}]}}\n'
EXPECTED = {
    "type": "assistant",
    "message": {"content": [{"type": "text", "text": "héllo"}]},
}


@pytest.mark.anyio
async def test_every_single_split_point_yields_the_same_value() -> None:
    for index in range(1, len(DOCUMENT)):
        values = await _collect([DOCUMENT[:index], DOCUMENT[index:]])
        assert values == [EXPECTED], index


@pytest.mark.anyio
@pytest.mark.parametrize("size", [1, 2, 3, 7, 16])
async def test_fixed_size_chunking_yields_the_same_value(size: int) -> None:
    chunks = [DOCUMENT[i : i + size] for i in range(0, len(DOCUMENT), size)]

    assert await _collect(chunks) == [EXPECTED]


@pytest.mark.anyio
async def test_document_spanning_physical_lines_is_reassembled() -> None:
    values = await _collect([b'{"type": "system",\n', b' "subtype": "init"}\n'])

    assert values == [{"type": "system", "subtype": "init"}]


@pytest.mark.anyio
async def test_values_arrive_in_order_and_blank_lines_are_skipped() -> None:
    values = await _collect([b'{"n": 1}\n\n   \n{"n": 2}\r\n', b'{"n": 3}\n'])

    assert values == [{"n": 1}, {"n": 2}, {"n": 3}]


@pytest.mark.anyio
async def test_trailing_line_without_newline_is_parsed() -> None:
    assert await _collect([b'{"n": 1}\n{"n": 2}']) == [{"n": 1}, {"n": 2}]


@pytest.mark.anyio
async def test_clean_end_of_input() -> None:
    reader = JsonLineReader(ChunkStream([]))

    with pytest.raises(anyio.EndOfStream):
        await reader.receive()


@pytest.mark.anyio
async def test_unparseable_remainder_at_end_of_input() -> None:
    with pytest.raises(CLIJSONDecodeError, match="end of stream"):
        await _collect([b'{"n": 1}\n{"n": \n'])


@pytest.mark.anyio
async def test_accumulated_overflow_is_reported_once() -> None:
    reader = JsonLineReader(
        ChunkStream([b'{"ok": true}\n', b'{"a": "0123456789",\n', b'"b": "0123456789"\n']),
        max_buffer_size=32,
    )
    values: list[Any] = []
    errors: list[MessageTooLargeError] = []

    try:
        async for value in reader:
            values.append(value)
    except MessageTooLargeError as exc:
        errors.append(exc)

    assert values == [{"ok": True}]
    assert len(errors) == 1
    assert errors[0].max_buffer_size == 32
    assert errors[0].size > 32
    assert "exceeded maximum buffer size of 32 bytes" in str(errors[0])
    # The reader stays failed rather than yielding a partial value.
    with pytest.raises(MessageTooLargeError):
        await reader.receive()


@pytest.mark.anyio
async def test_single_oversized_line_is_rejected() -> None:
    line = b'{"text": "' + b"x" * 200 + b'"}\n'

    with pytest.raises(MessageTooLargeError):
        await _collect([line[:50], line[50:]], max_buffer_size=64)


@pytest.mark.anyio
async def test_invalid_utf8_is_a_decode_error() -> None:
    reader = JsonLineReader(ChunkStream([b'{"n": 1}\n', b'{"text": "\xff\xfe"}\n']))

    assert await reader.receive() == {"n": 1}
    with pytest.raises(CLIJSONDecodeError, match="Invalid UTF-8") as excinfo:
        await reader.receive()
    assert "\\xff" in excinfo.value.line
    with pytest.raises(CLIJSONDecodeError):
        await reader.receive()
