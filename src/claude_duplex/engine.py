from __future__ import annotations

import contextlib
import enum
import threading
from collections import deque
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

import anyio
import msgspec

from .correlation import ControlOutcome, PendingRequests, PendingResponse
from .errors import (
    CLIConnectionError,
    ControlProtocolError,
    ControlTimeoutError,
    MessageParseError,
)
from .hooks import HookContext, HookMatcher, decode_hook_input, hook_output_payload
from .logging import get_logger, log_pipeline
from .messages import Message, parse_message
from .permissions import (
    PermissionUpdate,
    ToolPermissionContext,
    permission_response,
)
from .protocol import (
    REQUEST_SUBTYPES,
    CanUseToolRequest,
    ControlError,
    ControlRequest,
    ControlRequestBody,
    ControlSuccess,
    HookCallbackRequest,
    InitializeRequest,
    InterruptRequest,
    McpMessageRequest,
    McpStatusRequest,
    RequestIdFactory,
    RewindFilesRequest,
    SetModelRequest,
    SetPermissionModeRequest,
    decode_control_request,
    decode_control_response,
    encode_line,
    error_line,
    subtype_of,
    success_line,
)
from .registry import CallbackRegistry
from .settings import DEFAULT_CONTROL_TIMEOUT_S
from .transport import MessageSource, Transport

logger = get_logger(__name__)


class EngineState(enum.Enum):
    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class OutgoingQueue:
    """Control responses waiting to be written back to the child."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines: list[str] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def drain(self) -> list[str]:
        with self._lock:
            lines, self._lines = self._lines, []
        return lines


class ControlEngine:
    """Bidirectional control protocol over a JSON-lines transport.

    Exactly one task reads the transport at a time. ``receive_messages()``
    is the usual reader; a control call that is waiting for its response
    while nobody else is reading pumps inbound lines itself and buffers any
    data messages for the next ``receive_messages()`` iteration.

    Control requests from the child are answered by queueing a response;
    the queue is flushed between reads and by ``flush_responses()``.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        streaming: bool = True,
        registry: CallbackRegistry | None = None,
        hooks: Mapping[str, Sequence[HookMatcher]] | None = None,
        control_timeout: float = DEFAULT_CONTROL_TIMEOUT_S,
        initialize_timeout: float = DEFAULT_CONTROL_TIMEOUT_S,
    ) -> None:
        self._transport = transport
        self._streaming = streaming
        self._registry = registry if registry is not None else CallbackRegistry()
        self._hooks = hooks
        self._control_timeout = control_timeout
        self._initialize_timeout = initialize_timeout

        self._pending = PendingRequests()
        self._outgoing = OutgoingQueue()
        self._next_request_id = RequestIdFactory()
        self._read_lock = anyio.Lock()
        self._inbox: deque[Message | Exception] = deque()
        self._source: MessageSource | None = None
        self._eof = False
        self._input_ended = False
        self._state = EngineState.UNCONNECTED
        self.server_info: dict[str, Any] | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def registry(self) -> CallbackRegistry:
        return self._registry

    @property
    def queued_responses(self) -> int:
        return len(self._outgoing)

    @property
    def pending_requests(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        if self._state is EngineState.CLOSED:
            raise CLIConnectionError("Connection is closed")
        if self._state is not EngineState.UNCONNECTED:
            return
        await self._transport.connect()
        self._source = self._transport.read_messages()
        self._state = EngineState.CONNECTED

    async def initialize(self) -> dict[str, Any] | None:
        self._require_connected()
        if not self._streaming:
            return None
        if self._state is EngineState.INITIALIZED:
            return self.server_info
        hooks_config = self._registry.build_hooks_config(self._hooks)
        result = await self._request(
            InitializeRequest(hooks=hooks_config), self._initialize_timeout
        )
        self.server_info = result if isinstance(result, dict) else None
        self._state = EngineState.INITIALIZED
        logger.info(
            "control.initialized",
            hook_callbacks=len(self._registry.hook_ids()),
        )
        return self.server_info

    async def interrupt(self) -> None:
        await self._control(InterruptRequest())

    async def set_permission_mode(self, mode: str) -> None:
        await self._control(SetPermissionModeRequest(mode=mode))

    async def set_model(self, model: str | None = None) -> None:
        await self._control(SetModelRequest(model=model))

    async def rewind_files(self, user_message_id: str) -> None:
        await self._control(RewindFilesRequest(user_message_id=user_message_id))

    async def get_mcp_status(self) -> Any:
        return await self._control(McpStatusRequest())

    async def write(self, data: str) -> None:
        self._require_connected()
        await self._transport.write(data)

    async def end_input(self) -> None:
        self._require_connected()
        self._input_ended = True
        await self._transport.end_input()

    async def flush_responses(self) -> int:
        lines = self._outgoing.drain()
        if not lines:
            return 0
        if not self._streaming or self._input_ended:
            logger.warning(
                "control_response.dropped",
                count=len(lines),
                reason="stdin is closed in one-shot mode"
                if not self._streaming
                else "input has ended",
            )
            return 0
        for sent, line in enumerate(lines):
            try:
                await self._transport.write(line)
            except CLIConnectionError as exc:
                logger.error(
                    "control_response.failed",
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                    unsent=len(lines) - sent,
                )
                raise
        log_pipeline(logger, "control_response.flushed", count=len(lines))
        return len(lines)

    async def receive_messages(self) -> AsyncIterator[Message]:
        self._require_connected()
        while True:
            while self._inbox:
                item = self._inbox.popleft()
                if isinstance(item, Exception):
                    raise item
                yield item
            if self._eof or self._state is EngineState.CLOSED:
                return
            async with self._read_lock:
                if self._inbox or self._eof:
                    continue
                await self._pump_one()

    async def close(self) -> None:
        if self._state is EngineState.CLOSED:
            return
        self._state = EngineState.CLOSED
        self._pending.close()
        unsent = len(self._outgoing.drain())
        if unsent:
            logger.warning("control_response.dropped", count=unsent, reason="closed")
        await self._transport.close()

    async def __aenter__(self) -> ControlEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _require_connected(self) -> None:
        if self._state is EngineState.UNCONNECTED:
            raise CLIConnectionError("Not connected. Call connect() first.")
        if self._state is EngineState.CLOSED:
            raise CLIConnectionError("Connection is closed")

    async def _control(self, body: ControlRequestBody) -> Any:
        self._require_connected()
        if not self._streaming:
            raise ControlProtocolError("Control requests require streaming mode")
        return await self._request(body, self._control_timeout)

    async def _request(self, body: ControlRequestBody, timeout: float) -> Any:
        request_id = self._next_request_id()
        subtype = subtype_of(body)
        pending = self._pending.register(request_id)
        try:
            await self._transport.write(
                encode_line(ControlRequest(request_id=request_id, request=body))
            )
        except BaseException:
            self._pending.discard(request_id)
            pending.close()
            raise
        logger.debug("control_request.sent", request_id=request_id, subtype=subtype)

        try:
            with anyio.fail_after(timeout):
                return await self._await_response(pending)
        except TimeoutError:
            self._pending.discard(request_id)
            pending.close()
            logger.warning(
                "control_request.timeout",
                request_id=request_id,
                subtype=subtype,
                timeout=timeout,
            )
            raise ControlTimeoutError(
                f"Control request timed out after {timeout:g} seconds"
            ) from None

    async def _await_response(self, pending: PendingResponse) -> Any:
        while True:
            done, payload = pending.poll()
            if done:
                return payload
            async with self._read_lock:
                done, payload = pending.poll()
                if done:
                    return payload
                if not await self._pump_one():
                    # End of input closed every slot, so poll raises here.
                    done, payload = pending.poll()
                    if done:
                        return payload
                    raise ControlProtocolError("Response channel closed")

    async def _pump_one(self) -> bool:
        """Read and classify one inbound value; False once input has ended."""
        if self._eof or self._source is None:
            return False
        try:
            value = await self._source.receive()
        except anyio.EndOfStream:
            self._end_of_input(None)
            return False
        except Exception as exc:
            self._end_of_input(exc)
            return False
        await self._classify(value)
        with anyio.CancelScope(shield=True):
            await self.flush_responses()
        return True

    def _end_of_input(self, exc: Exception | None) -> None:
        self._eof = True
        self._pending.close()
        if exc is None:
            logger.debug("transport.eof")
            return
        if self._state is EngineState.CLOSED:
            return
        logger.error(
            "transport.read_failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        self._inbox.append(exc)

    async def _classify(self, value: Any) -> None:
        kind = value.get("type") if isinstance(value, dict) else None
        match kind:
            case "control_response":
                self._handle_control_response(value)
            case "control_request":
                await self._handle_control_request(value)
            case "control_cancel_request":
                # Cancellation of in-flight child requests is not supported.
                log_pipeline(
                    logger,
                    "control_cancel_request.skipped",
                    request_id=value.get("request_id"),
                )
            case _:
                try:
                    self._inbox.append(parse_message(value))
                except MessageParseError as exc:
                    logger.error("message.parse_failed", error=str(exc))
                    self._inbox.append(exc)

    def _handle_control_response(self, value: dict[str, Any]) -> None:
        try:
            envelope = decode_control_response(value)
        except msgspec.ValidationError as exc:
            logger.warning("control_response.invalid", error=str(exc))
            return
        match envelope.response:
            case ControlSuccess(request_id=request_id, response=payload):
                outcome = ControlOutcome(payload=payload)
            case ControlError(request_id=request_id, error=error):
                outcome = ControlOutcome(error=error)
        if self._pending.resolve(request_id, outcome):
            log_pipeline(logger, "control_response.received", request_id=request_id)

    async def _handle_control_request(self, value: dict[str, Any]) -> None:
        request_id = value.get("request_id")
        if not isinstance(request_id, str):
            logger.warning("control_request.missing_request_id")
            return
        try:
            request = decode_control_request(value)
        except msgspec.ValidationError as exc:
            raw = value.get("request")
            subtype = raw.get("subtype") if isinstance(raw, dict) else None
            if subtype in REQUEST_SUBTYPES:
                error = f"Invalid {subtype} request: {exc}"
            else:
                error = f"Unsupported control request: {subtype}"
            logger.warning(
                "control_request.rejected", request_id=request_id, error=error
            )
            self._outgoing.append(error_line(request_id, error))
            return

        subtype = subtype_of(request.request)
        logger.debug("control_request.received", request_id=request_id, subtype=subtype)
        try:
            payload = await self._dispatch(request.request)
        except anyio.get_cancelled_exc_class():
            # The child is still waiting on this id; answer it before unwinding.
            logger.warning(
                "control_request.cancelled", request_id=request_id, subtype=subtype
            )
            self._outgoing.append(error_line(request_id, "Control request cancelled"))
            with anyio.CancelScope(shield=True):
                await self._flush_after_cancel()
            raise
        except Exception as exc:
            logger.error(
                "control_request.failed",
                request_id=request_id,
                subtype=subtype,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            self._outgoing.append(error_line(request_id, str(exc)))
            return
        self._outgoing.append(success_line(request_id, payload))

    async def _flush_after_cancel(self) -> None:
        # flush_responses logs write failures; the cancellation still propagates.
        with contextlib.suppress(CLIConnectionError):
            await self.flush_responses()

    async def _dispatch(self, body: ControlRequestBody) -> Any:
        match body:
            case CanUseToolRequest():
                return await self._can_use_tool(body)
            case HookCallbackRequest():
                return await self._hook_callback(body)
            case McpMessageRequest():
                return _mcp_server_not_found(body)
        raise ControlProtocolError(f"Unsupported control request: {subtype_of(body)}")

    async def _can_use_tool(self, body: CanUseToolRequest) -> dict[str, Any]:
        callback = self._registry.permission_callback
        if callback is None:
            raise ControlProtocolError("canUseTool callback is not provided")
        context = ToolPermissionContext(
            suggestions=_permission_suggestions(body.permission_suggestions),
            blocked_path=body.blocked_path,
        )
        result = await callback(body.tool_name, body.input, context)
        return permission_response(result, body.input)

    async def _hook_callback(self, body: HookCallbackRequest) -> Any:
        callback = self._registry.get_hook(body.callback_id)
        hook_input = decode_hook_input(body.input)
        output = await callback(hook_input, body.tool_use_id, HookContext())
        return hook_output_payload(output)


def _permission_suggestions(raw: list[dict[str, Any]] | None) -> list[PermissionUpdate]:
    suggestions: list[PermissionUpdate] = []
    for item in raw or []:
        try:
            suggestions.append(PermissionUpdate.from_dict(item))
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("permission_suggestion.invalid", error=str(exc))
    return suggestions


def _mcp_server_not_found(body: McpMessageRequest) -> dict[str, Any]:
    message = body.message if isinstance(body.message, dict) else {}
    return {
        "jsonrpc": "2.0",
        "id": message.get("id"),
        "error": {
            "code": -32601,
            "message": f"Server '{body.server_name}' not found",
        },
    }
