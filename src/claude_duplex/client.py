from __future__ import annotations

import dataclasses
from collections.abc import AsyncIterator
from typing import Any

from .engine import ControlEngine
from .errors import CLIConnectionError, ConfigError
from .logging import get_logger
from .messages import Message, ResultMessage
from .options import ClaudeAgentOptions
from .permissions import PermissionMode
from .protocol import encode_line, user_message
from .registry import CallbackRegistry
from .settings import DuplexSettings, load_settings
from .transport import Transport
from .transport.subprocess_cli import SubprocessCLITransport

logger = get_logger(__name__)


def resolve_options(
    options: ClaudeAgentOptions | None, *, streaming: bool
) -> ClaudeAgentOptions:
    """Apply the permission-prompt wiring a ``can_use_tool`` callback needs."""
    options = options or ClaudeAgentOptions()
    if options.can_use_tool is None:
        return options
    if not streaming:
        raise ConfigError(
            "can_use_tool callback requires streaming mode; use DuplexClient"
        )
    if options.permission_prompt_tool_name not in (None, "stdio"):
        raise ConfigError(
            "can_use_tool callback cannot be combined with "
            "permission_prompt_tool_name"
        )
    return dataclasses.replace(options, permission_prompt_tool_name="stdio")


def build_engine(
    options: ClaudeAgentOptions,
    settings: DuplexSettings,
    *,
    streaming: bool,
    transport: Transport | None = None,
    prompt: str | None = None,
) -> ControlEngine:
    if transport is None:
        transport = SubprocessCLITransport(
            options, streaming=streaming, prompt=prompt, settings=settings
        )
    return ControlEngine(
        transport,
        streaming=streaming,
        registry=CallbackRegistry(options.can_use_tool),
        hooks=options.hooks,
        control_timeout=options.control_timeout or settings.control_timeout_s,
        initialize_timeout=options.initialize_timeout
        or settings.initialize_timeout_s,
    )


class DuplexClient:
    """Interactive, multi-turn session with the Claude Code CLI.

    Usage::

        async with DuplexClient(options) as client:
            await client.send_message("hello")
            async for message in client.receive_response():
                ...
    """

    def __init__(
        self,
        options: ClaudeAgentOptions | None = None,
        *,
        transport: Transport | None = None,
        settings: DuplexSettings | None = None,
    ) -> None:
        self._options = resolve_options(options, streaming=True)
        self._settings = settings
        self._transport = transport
        self._engine: ControlEngine | None = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    async def connect(self, prompt: str | None = None) -> None:
        if self._engine is not None:
            return
        settings = self._settings or load_settings()
        engine = build_engine(
            self._options, settings, streaming=True, transport=self._transport
        )
        try:
            await engine.start()
            await engine.initialize()
            if prompt is not None:
                await engine.write(encode_line(user_message(prompt)))
        except BaseException:
            await engine.close()
            raise
        self._engine = engine
        logger.info("client.connected", server_info=engine.server_info is not None)

    async def send_message(self, text: str, session_id: str = "default") -> None:
        await self._require().write(encode_line(user_message(text, session_id)))

    async def send_raw(self, message: dict[str, Any]) -> None:
        await self._require().write(encode_line(message))

    async def receive_messages(self) -> AsyncIterator[Message]:
        async for message in self._require().receive_messages():
            yield message

    async def receive_response(self) -> AsyncIterator[Message]:
        """Messages up to and including the next ``ResultMessage``."""
        async for message in self._require().receive_messages():
            yield message
            if isinstance(message, ResultMessage):
                return

    async def flush_responses(self) -> int:
        return await self._require().flush_responses()

    async def interrupt(self) -> None:
        await self._require().interrupt()

    async def set_permission_mode(self, mode: PermissionMode) -> None:
        await self._require().set_permission_mode(mode)

    async def set_model(self, model: str | None = None) -> None:
        await self._require().set_model(model)

    async def rewind_files(self, user_message_id: str) -> None:
        await self._require().rewind_files(user_message_id)

    async def get_mcp_status(self) -> Any:
        return await self._require().get_mcp_status()

    def get_server_info(self) -> dict[str, Any] | None:
        return self._require().server_info

    async def end_input(self) -> None:
        await self._require().end_input()

    async def disconnect(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.close()
            logger.info("client.disconnected")

    async def __aenter__(self) -> DuplexClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    def _require(self) -> ControlEngine:
        if self._engine is None:
            raise CLIConnectionError("Not connected. Call connect() first.")
        return self._engine
