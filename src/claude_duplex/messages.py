"""Conversational messages flowing from the CLI to the caller."""

from __future__ import annotations

from typing import Any, Literal

import msgspec

from .errors import MessageParseError

AssistantMessageError = Literal[
    "authentication_failed",
    "billing_error",
    "rate_limit",
    "invalid_request",
    "server_error",
    "unknown",
]

_ASSISTANT_ERRORS = frozenset(
    {
        "authentication_failed",
        "billing_error",
        "rate_limit",
        "invalid_request",
        "server_error",
        "unknown",
    }
)


class TextBlock(msgspec.Struct, tag="text", tag_field="type"):
    text: str = ""


class ThinkingBlock(msgspec.Struct, tag="thinking", tag_field="type"):
    thinking: str = ""
    signature: str = ""


class ToolUseBlock(msgspec.Struct, tag="tool_use", tag_field="type"):
    id: str
    name: str
    input: dict[str, Any] = msgspec.field(default_factory=dict)


class ToolResultBlock(msgspec.Struct, tag="tool_result", tag_field="type"):
    tool_use_id: str
    content: Any = None
    is_error: bool | None = None


ContentBlock = TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock


class UserMessage(msgspec.Struct, kw_only=True):
    content: str | list[ContentBlock]
    uuid: str | None = None
    parent_tool_use_id: str | None = None
    tool_use_result: Any = None


class AssistantMessage(msgspec.Struct, kw_only=True):
    content: list[ContentBlock]
    model: str = "unknown"
    parent_tool_use_id: str | None = None
    error: AssistantMessageError | None = None

    @property
    def text(self) -> str:
        return "".join(
            block.text for block in self.content if isinstance(block, TextBlock)
        )


class SystemMessage(msgspec.Struct, kw_only=True):
    subtype: str
    data: dict[str, Any]


class ResultMessage(msgspec.Struct, kw_only=True):
    subtype: str
    duration_ms: int
    duration_api_ms: int
    is_error: bool
    num_turns: int
    session_id: str
    total_cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    result: str | None = None
    structured_output: Any = None


class StreamEvent(msgspec.Struct, kw_only=True):
    uuid: str
    session_id: str
    event: Any
    parent_tool_use_id: str | None = None


Message = UserMessage | AssistantMessage | SystemMessage | ResultMessage | StreamEvent


def parse_message(data: Any) -> Message:
    if not isinstance(data, dict):
        raise MessageParseError(
            "Invalid message data type (expected object, got "
            f"{type(data).__name__})",
            data,
        )
    message_type = data.get("type")
    if not isinstance(message_type, str):
        raise MessageParseError("Message missing 'type' field", data)

    match message_type:
        case "user":
            return _parse_user(data)
        case "assistant":
            return _parse_assistant(data)
        case "system":
            subtype = data.get("subtype")
            if not isinstance(subtype, str):
                raise MessageParseError(
                    "Missing 'subtype' field in system message", data
                )
            return SystemMessage(subtype=subtype, data=dict(data))
        case "result":
            return _parse_result(data)
        case "stream_event":
            return _parse_stream_event(data)
    raise MessageParseError(f"Unknown message type: {message_type}", data)


def parse_content_blocks(raw: Any) -> list[ContentBlock]:
    """Decode known content blocks; unknown or malformed blocks are dropped."""
    if not isinstance(raw, list):
        return []
    blocks: list[ContentBlock] = []
    for item in raw:
        try:
            blocks.append(msgspec.convert(item, ContentBlock))
        except msgspec.ValidationError:
            continue
    return blocks


def _message_content(data: dict[str, Any], kind: str) -> Any:
    message = data.get("message")
    if not isinstance(message, dict):
        raise MessageParseError(f"Missing 'message' field in {kind} message", data)
    if "content" not in message:
        raise MessageParseError(f"Missing 'content' field in {kind} message", data)
    return message


def _parse_user(data: dict[str, Any]) -> UserMessage:
    message = _message_content(data, "user")
    raw = message["content"]
    content: str | list[ContentBlock]
    if isinstance(raw, str):
        content = raw
    elif isinstance(raw, list):
        content = parse_content_blocks(raw)
    else:
        content = msgspec.json.encode(raw).decode()
    return UserMessage(
        content=content,
        uuid=_opt_str(data.get("uuid")),
        parent_tool_use_id=_opt_str(data.get("parent_tool_use_id")),
        tool_use_result=data.get("tool_use_result"),
    )


def _parse_assistant(data: dict[str, Any]) -> AssistantMessage:
    message = _message_content(data, "assistant")
    model = message.get("model")
    error = message.get("error")
    return AssistantMessage(
        content=parse_content_blocks(message["content"]),
        model=model if isinstance(model, str) else "unknown",
        parent_tool_use_id=_opt_str(data.get("parent_tool_use_id")),
        error=error if error in _ASSISTANT_ERRORS else None,
    )


def _parse_result(data: dict[str, Any]) -> ResultMessage:
    duration_ms = data.get("duration_ms")
    if not isinstance(duration_ms, int):
        raise MessageParseError("Missing 'duration_ms' field in result message", data)
    session_id = data.get("session_id")
    if not isinstance(session_id, str):
        raise MessageParseError("Missing 'session_id' field in result message", data)
    subtype = data.get("subtype")
    cost = data.get("total_cost_usd")
    usage = data.get("usage")
    result = data.get("result")
    return ResultMessage(
        subtype=subtype if isinstance(subtype, str) else "unknown",
        duration_ms=duration_ms,
        duration_api_ms=_int(data.get("duration_api_ms")),
        is_error=data.get("is_error") is True,
        num_turns=_int(data.get("num_turns")),
        session_id=session_id,
        total_cost_usd=float(cost) if isinstance(cost, (int, float)) else None,
        usage=usage if isinstance(usage, dict) else None,
        result=result if isinstance(result, str) else None,
        structured_output=data.get("structured_output"),
    )


def _parse_stream_event(data: dict[str, Any]) -> StreamEvent:
    for name in ("uuid", "session_id"):
        if not isinstance(data.get(name), str):
            raise MessageParseError(f"Missing '{name}' field in stream_event", data)
    if "event" not in data:
        raise MessageParseError("Missing 'event' field in stream_event", data)
    return StreamEvent(
        uuid=data["uuid"],
        session_id=data["session_id"],
        event=data["event"],
        parent_tool_use_id=_opt_str(data.get("parent_tool_use_id")),
    )


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value
