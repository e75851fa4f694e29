"""Control envelopes exchanged with the CLI over stdin/stdout."""

from __future__ import annotations

import itertools
import secrets
from typing import Any, get_args

import msgspec

CONTROL_REQUEST = "control_request"
CONTROL_RESPONSE = "control_response"
CONTROL_CANCEL_REQUEST = "control_cancel_request"


class _RequestBody(msgspec.Struct, tag_field="subtype", omit_defaults=True, kw_only=True):
    pass


class InterruptRequest(_RequestBody, tag="interrupt"):
    pass


class CanUseToolRequest(_RequestBody, tag="can_use_tool"):
    tool_name: str
    input: dict[str, Any] = msgspec.field(default_factory=dict)
    permission_suggestions: list[dict[str, Any]] | None = None
    blocked_path: str | None = None


class InitializeRequest(_RequestBody, tag="initialize"):
    hooks: dict[str, Any] | None = None


class SetPermissionModeRequest(_RequestBody, tag="set_permission_mode"):
    mode: str


class SetModelRequest(_RequestBody, tag="set_model"):
    model: str | None = None


class HookCallbackRequest(_RequestBody, tag="hook_callback"):
    callback_id: str
    input: Any = None
    tool_use_id: str | None = None


class McpMessageRequest(_RequestBody, tag="mcp_message"):
    server_name: str
    message: Any = None


class RewindFilesRequest(_RequestBody, tag="rewind_files"):
    user_message_id: str


class McpStatusRequest(_RequestBody, tag="mcp_status"):
    pass


ControlRequestBody = (
    InterruptRequest
    | CanUseToolRequest
    | InitializeRequest
    | SetPermissionModeRequest
    | SetModelRequest
    | HookCallbackRequest
    | McpMessageRequest
    | RewindFilesRequest
    | McpStatusRequest
)


REQUEST_SUBTYPES: frozenset[str] = frozenset(
    cls.__struct_config__.tag for cls in get_args(ControlRequestBody)
)


def subtype_of(body: ControlRequestBody) -> str:
    return body.__struct_config__.tag


class ControlRequest(msgspec.Struct, tag=CONTROL_REQUEST, tag_field="type"):
    request_id: str
    request: ControlRequestBody


class ControlSuccess(msgspec.Struct, tag="success", tag_field="subtype", omit_defaults=True):
    request_id: str
    response: Any = None


class ControlError(msgspec.Struct, tag="error", tag_field="subtype"):
    request_id: str
    error: str


class ControlResponse(msgspec.Struct, tag=CONTROL_RESPONSE, tag_field="type"):
    response: ControlSuccess | ControlError


class RequestIdFactory:
    """``req_<counter>_<hex>`` ids; unique for the lifetime of one connection."""

    def __init__(self) -> None:
        self._counter = itertools.count()

    def __call__(self) -> str:
        return f"req_{next(self._counter)}_{secrets.token_hex(4)}"


def encode_line(message: msgspec.Struct | dict[str, Any]) -> str:
    return msgspec.json.encode(message).decode() + "\n"


def decode_control_request(data: Any) -> ControlRequest:
    return msgspec.convert(data, ControlRequest)


def decode_control_response(data: Any) -> ControlResponse:
    return msgspec.convert(data, ControlResponse)


def success_line(request_id: str, response: Any) -> str:
    return encode_line(
        ControlResponse(response=ControlSuccess(request_id=request_id, response=response))
    )


def error_line(request_id: str, error: str) -> str:
    return encode_line(
        ControlResponse(response=ControlError(request_id=request_id, error=error))
    )


def user_message(text: str, session_id: str = "default") -> dict[str, Any]:
    return {
        "type": "user",
        "message": {"role": "user", "content": text},
        "parent_tool_use_id": None,
        "session_id": session_id,
    }
