from __future__ import annotations

import pytest

from claude_duplex.errors import MessageParseError
from claude_duplex.messages import (
    AssistantMessage,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    parse_message,
)


def test_user_message_with_text() -> None:
    message = parse_message(
        {"type": "user", "message": {"content": "hi"}, "uuid": "u-1"}
    )

    assert message == UserMessage(content="hi", uuid="u-1")


def test_user_message_with_blocks_drops_unknown_ones() -> None:
    message = parse_message(
        {
            "type": "user",
            "parent_tool_use_id": "toolu_1",
            "message": {
                "content": [
                    {"type": "tool_result", "tool_use_id": "toolu_1", "content": "ok"},
                    {"type": "image", "source": {}},
                ]
            },
        }
    )

    assert isinstance(message, UserMessage)
    assert message.content == [ToolResultBlock(tool_use_id="toolu_1", content="ok")]
    assert message.parent_tool_use_id == "toolu_1"


def test_assistant_message() -> None:
    message = parse_message(
        {
            "type": "assistant",
            "message": {
                "model": "claude-sonnet",
                "content": [
                    {"type": "thinking", "thinking": "hmm", "signature": "sig"},
                    {"type": "text", "text": "Hello"},
                    {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}},
                    {"type": "text", "text": " world"},
                ],
            },
        }
    )

    assert isinstance(message, AssistantMessage)
    assert message.model == "claude-sonnet"
    assert message.content[0] == ThinkingBlock(thinking="hmm", signature="sig")
    assert message.content[2] == ToolUseBlock(id="t1", name="Bash", input={"command": "ls"})
    assert message.text == "Hello world"
    assert message.error is None


def test_assistant_defaults_and_error() -> None:
    message = parse_message(
        {"type": "assistant", "message": {"content": [], "error": "rate_limit"}}
    )

    assert message == AssistantMessage(content=[], model="unknown", error="rate_limit")


def test_system_message_keeps_raw_data() -> None:
    data = {"type": "system", "subtype": "init", "tools": ["Bash"]}

    assert parse_message(data) == SystemMessage(subtype="init", data=data)


def test_result_message() -> None:
    message = parse_message(
        {
            "type": "result",
            "subtype": "success",
            "duration_ms": 1500,
            "duration_api_ms": 1200,
            "is_error": False,
            "num_turns": 2,
            "session_id": "s-1",
            "total_cost_usd": 0.25,
            "result": "done",
        }
    )

    assert isinstance(message, ResultMessage)
    assert message.duration_ms == 1500
    assert message.num_turns == 2
    assert message.total_cost_usd == 0.25
    assert message.result == "done"


def test_stream_event() -> None:
    message = parse_message(
        {
            "type": "stream_event",
            "uuid": "e-1",
            "session_id": "s-1",
            "event": {"type": "content_block_delta"},
        }
    )

    assert message == StreamEvent(
        uuid="e-1", session_id="s-1", event={"type": "content_block_delta"}
    )


@pytest.mark.parametrize(
    ("data", "fragment"),
    [
        ([1, 2], "expected object, got list"),
        ({"message": {}}, "missing 'type'"),
        ({"type": "user"}, "Missing 'message' field in user message"),
        ({"type": "assistant", "message": {}}, "Missing 'content' field"),
        ({"type": "system"}, "Missing 'subtype'"),
        ({"type": "result", "session_id": "s"}, "Missing 'duration_ms'"),
        ({"type": "result", "duration_ms": 1}, "Missing 'session_id'"),
        ({"type": "stream_event", "uuid": "u", "session_id": "s"}, "Missing 'event'"),
        ({"type": "stream_event", "session_id": "s", "event": {}}, "Missing 'uuid'"),
        ({"type": "telemetry"}, "Unknown message type: telemetry"),
    ],
)
def test_parse_failures(data: object, fragment: str) -> None:
    with pytest.raises(MessageParseError, match=fragment) as excinfo:
        parse_message(data)
    assert excinfo.value.data == data


def test_text_block_default() -> None:
    message = parse_message(
        {"type": "assistant", "message": {"content": [{"type": "text"}]}}
    )

    assert message.content == [TextBlock(text="")]
