from __future__ import annotations

import json
import re

import msgspec
import pytest

from claude_duplex.errors import ControlProtocolError
from claude_duplex.hooks import HookMatcher
from claude_duplex.protocol import (
    REQUEST_SUBTYPES,
    CanUseToolRequest,
    ControlRequest,
    InitializeRequest,
    RequestIdFactory,
    decode_control_request,
    decode_control_response,
    encode_line,
    error_line,
    success_line,
    user_message,
)
from claude_duplex.registry import CallbackRegistry


def test_request_ids_are_counted_and_salted() -> None:
    next_id = RequestIdFactory()
    ids = [next_id() for _ in range(3)]

    assert [i.split("_")[1] for i in ids] == ["0", "1", "2"]
    assert all(re.fullmatch(r"req_\d+_[0-9a-f]{8}", i) for i in ids)
    assert RequestIdFactory()() != ids[0]


def test_encoded_request_is_one_json_line() -> None:
    line = encode_line(
        ControlRequest(request_id="req_1_ab", request=InitializeRequest())
    )

    assert line.endswith("\n")
    assert "\n" not in line[:-1]
    assert json.loads(line) == {
        "type": "control_request",
        "request_id": "req_1_ab",
        "request": {"subtype": "initialize"},
    }


def test_response_lines() -> None:
    assert json.loads(success_line("req_1", {"behavior": "allow"})) == {
        "type": "control_response",
        "response": {
            "subtype": "success",
            "request_id": "req_1",
            "response": {"behavior": "allow"},
        },
    }
    assert json.loads(error_line("req_2", "boom")) == {
        "type": "control_response",
        "response": {"subtype": "error", "request_id": "req_2", "error": "boom"},
    }


def test_decode_inbound_request() -> None:
    request = decode_control_request(
        {
            "type": "control_request",
            "request_id": "req_5",
            "request": {
                "subtype": "can_use_tool",
                "tool_name": "Read",
                "input": {"file_path": "/a"},
                "unknown_field": 1,
            },
        }
    )

    assert request.request_id == "req_5"
    assert request.request == CanUseToolRequest(
        tool_name="Read", input={"file_path": "/a"}
    )


def test_decode_rejects_unknown_subtype() -> None:
    with pytest.raises(msgspec.ValidationError):
        decode_control_request(
            {"type": "control_request", "request_id": "r", "request": {"subtype": "x"}}
        )


def test_decode_response_variants() -> None:
    ok = decode_control_response(
        {"type": "control_response", "response": {"subtype": "success", "request_id": "a"}}
    )
    bad = decode_control_response(
        {
            "type": "control_response",
            "response": {"subtype": "error", "request_id": "b", "error": "no"},
        }
    )

    assert ok.response.request_id == "a"
    assert ok.response.response is None
    assert bad.response.error == "no"


def test_request_subtypes_cover_every_kind() -> None:
    assert REQUEST_SUBTYPES == {
        "interrupt",
        "can_use_tool",
        "initialize",
        "set_permission_mode",
        "set_model",
        "hook_callback",
        "mcp_message",
        "rewind_files",
        "mcp_status",
    }


def test_user_message_envelope() -> None:
    assert user_message("hello") == {
        "type": "user",
        "message": {"role": "user", "content": "hello"},
        "parent_tool_use_id": None,
        "session_id": "default",
    }


# ---------------------------------------------------------------------------
# Callback registry
# ---------------------------------------------------------------------------


async def _noop(hook_input, tool_use_id, context):
    return {}


def test_registry_generates_sequential_hook_ids() -> None:
    registry = CallbackRegistry()

    assert registry.register_hook(_noop) == "hook_0"
    assert registry.register_hook(_noop) == "hook_1"
    assert registry.get_hook("hook_1") is _noop


def test_registry_missing_hook() -> None:
    with pytest.raises(ControlProtocolError, match="No hook callback found for ID: hook_3"):
        CallbackRegistry().get_hook("hook_3")


def test_hooks_config_is_absent_without_callbacks() -> None:
    registry = CallbackRegistry()

    assert registry.build_hooks_config(None) is None
    assert registry.build_hooks_config({}) is None
    assert registry.build_hooks_config({"Stop": []}) is None
    assert registry.hook_ids() == []


def test_hooks_config_shape() -> None:
    registry = CallbackRegistry()
    config = registry.build_hooks_config(
        {"PostToolUse": [HookMatcher(matcher="Write|Edit", hooks=[_noop], timeout=30)]}
    )

    assert config == {
        "PostToolUse": [
            {"matcher": "Write|Edit", "hookCallbackIds": ["hook_0"], "timeout": 30}
        ]
    }
