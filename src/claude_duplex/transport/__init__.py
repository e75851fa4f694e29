from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MessageSource(Protocol):
    """Yields decoded JSON values; raises ``anyio.EndOfStream`` when done."""

    async def receive(self) -> Any: ...


@runtime_checkable
class Transport(Protocol):
    async def connect(self) -> None: ...

    async def write(self, data: str) -> None: ...

    def read_messages(self) -> MessageSource: ...

    async def end_input(self) -> None: ...

    async def close(self) -> None: ...

    def is_ready(self) -> bool: ...


__all__ = ["MessageSource", "Transport"]
