from __future__ import annotations

from collections.abc import AsyncIterator

import anyio

from .client import build_engine, resolve_options
from .messages import Message
from .options import ClaudeAgentOptions
from .settings import DuplexSettings, load_settings
from .transport import Transport


async def query(
    prompt: str,
    options: ClaudeAgentOptions | None = None,
    *,
    transport: Transport | None = None,
    settings: DuplexSettings | None = None,
) -> AsyncIterator[Message]:
    """Run one prompt with ``--print`` and yield every message it produces.

    The CLI process is closed when iteration finishes or is abandoned.
    """
    options = resolve_options(options, streaming=False)
    engine = build_engine(
        options,
        settings or load_settings(),
        streaming=False,
        transport=transport,
        prompt=prompt,
    )
    try:
        await engine.start()
        async for message in engine.receive_messages():
            yield message
    finally:
        with anyio.CancelScope(shield=True):
            await engine.close()
