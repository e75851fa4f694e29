from __future__ import annotations

from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

import msgspec

HookEvent = Literal[
    "PreToolUse",
    "PostToolUse",
    "PostToolUseFailure",
    "UserPromptSubmit",
    "Stop",
    "SubagentStop",
    "PreCompact",
]

HOOK_EVENTS: tuple[str, ...] = (
    "PreToolUse",
    "PostToolUse",
    "PostToolUseFailure",
    "UserPromptSubmit",
    "Stop",
    "SubagentStop",
    "PreCompact",
)


class _HookInputBase(msgspec.Struct, tag_field="hook_event_name", kw_only=True):
    session_id: str
    transcript_path: str
    cwd: str
    permission_mode: str | None = None


class PreToolUseHookInput(_HookInputBase, tag="PreToolUse", kw_only=True):
    tool_name: str
    tool_input: Any


class PostToolUseHookInput(_HookInputBase, tag="PostToolUse", kw_only=True):
    tool_name: str
    tool_input: Any
    tool_response: Any


class PostToolUseFailureHookInput(
    _HookInputBase, tag="PostToolUseFailure", kw_only=True
):
    tool_name: str
    tool_input: Any
    tool_use_id: str
    error: str
    is_interrupt: bool | None = None


class UserPromptSubmitHookInput(_HookInputBase, tag="UserPromptSubmit", kw_only=True):
    prompt: str


class StopHookInput(_HookInputBase, tag="Stop", kw_only=True):
    stop_hook_active: bool


class SubagentStopHookInput(_HookInputBase, tag="SubagentStop", kw_only=True):
    stop_hook_active: bool


class PreCompactHookInput(_HookInputBase, tag="PreCompact", kw_only=True):
    trigger: Literal["manual", "auto"]
    custom_instructions: str | None = None


HookInput = (
    PreToolUseHookInput
    | PostToolUseHookInput
    | PostToolUseFailureHookInput
    | UserPromptSubmitHookInput
    | StopHookInput
    | SubagentStopHookInput
    | PreCompactHookInput
)


class _HookSpecificOutputBase(
    msgspec.Struct,
    tag_field="hookEventName",
    rename="camel",
    omit_defaults=True,
    kw_only=True,
):
    pass


class PreToolUseHookSpecificOutput(_HookSpecificOutputBase, tag="PreToolUse"):
    permission_decision: Literal["allow", "deny", "ask"] | None = None
    permission_decision_reason: str | None = None
    updated_input: dict[str, Any] | None = None


class PostToolUseHookSpecificOutput(_HookSpecificOutputBase, tag="PostToolUse"):
    additional_context: str | None = None


class PostToolUseFailureHookSpecificOutput(
    _HookSpecificOutputBase, tag="PostToolUseFailure"
):
    additional_context: str | None = None


class UserPromptSubmitHookSpecificOutput(
    _HookSpecificOutputBase, tag="UserPromptSubmit"
):
    additional_context: str | None = None


HookSpecificOutput = (
    PreToolUseHookSpecificOutput
    | PostToolUseHookSpecificOutput
    | PostToolUseFailureHookSpecificOutput
    | UserPromptSubmitHookSpecificOutput
)


class HookJSONOutput(msgspec.Struct, rename="camel", omit_defaults=True, kw_only=True):
    # `continue` and `async` are keywords, hence the trailing underscores.
    continue_: bool | None = msgspec.field(default=None, name="continue")
    async_: bool | None = msgspec.field(default=None, name="async")
    async_timeout: int | None = None
    suppress_output: bool | None = None
    stop_reason: str | None = None
    decision: Literal["block"] | None = None
    system_message: str | None = None
    reason: str | None = None
    hook_specific_output: HookSpecificOutput | None = None


@dataclass(slots=True)
class HookContext:
    signal: Any | None = None


@runtime_checkable
class HookCallback(Protocol):
    def __call__(
        self,
        hook_input: HookInput,
        tool_use_id: str | None,
        context: HookContext,
    ) -> Awaitable[HookJSONOutput | Mapping[str, Any]]: ...


@dataclass(slots=True)
class HookMatcher:
    matcher: str | None = None
    hooks: list[HookCallback] = field(default_factory=list)
    timeout: float | None = None


def decode_hook_input(data: Any) -> HookInput:
    return msgspec.convert(data, HookInput)


def hook_output_payload(output: HookJSONOutput | Mapping[str, Any] | None) -> Any:
    if output is None:
        return {}
    if isinstance(output, HookJSONOutput):
        return msgspec.to_builtins(output)
    if isinstance(output, Mapping):
        return dict(output)
    raise TypeError(
        f"hook callback must return HookJSONOutput or a mapping, got "
        f"{type(output).__name__}"
    )
