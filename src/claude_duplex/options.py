from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Literal

import msgspec

from .hooks import HookMatcher
from .permissions import CanUseTool, PermissionMode

SettingSource = Literal["user", "project", "local"]
SdkBeta = Literal["context-1m-2025-08-07"]


@dataclass(frozen=True, slots=True)
class SystemPromptPreset:
    preset: str = "claude_code"
    append: str | None = None


@dataclass(frozen=True, slots=True)
class ToolsPreset:
    preset: str = "claude_code"


class AgentDefinition(msgspec.Struct, omit_defaults=True, kw_only=True):
    description: str
    prompt: str
    tools: list[str] | None = None
    model: str | None = None


@dataclass(frozen=True, slots=True)
class SdkPluginConfig:
    path: str
    type: Literal["local"] = "local"


@dataclass(slots=True)
class ClaudeAgentOptions:
    tools: list[str] | ToolsPreset | None = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    system_prompt: str | SystemPromptPreset | None = None
    # name -> server config; configs with type "sdk" stay in-process and are
    # never passed to the CLI. A str/Path is forwarded verbatim.
    mcp_servers: dict[str, dict[str, Any]] | str | Path | None = None
    permission_mode: PermissionMode | None = None
    can_use_tool: CanUseTool | None = None
    hooks: dict[str, list[HookMatcher]] = field(default_factory=dict)
    continue_conversation: bool = False
    resume: str | None = None
    max_turns: int | None = None
    max_budget_usd: float | None = None
    model: str | None = None
    fallback_model: str | None = None
    betas: list[SdkBeta] = field(default_factory=list)
    permission_prompt_tool_name: str | None = None
    cwd: str | Path | None = None
    cli_path: str | Path | None = None
    settings: str | None = None
    add_dirs: list[str | Path] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    extra_args: dict[str, str | None] = field(default_factory=dict)
    user: str | None = None
    include_partial_messages: bool = False
    fork_session: bool = False
    agents: dict[str, AgentDefinition] | None = None
    setting_sources: list[SettingSource] | None = None
    sandbox: dict[str, Any] | None = None
    plugins: list[SdkPluginConfig] = field(default_factory=list)
    max_thinking_tokens: int | None = None
    output_format: dict[str, Any] | None = None
    enable_file_checkpointing: bool = False
    stderr: IO[Any] | None = None
    # None falls back to DuplexSettings.
    max_buffer_size: int | None = None
    control_timeout: float | None = None
    initialize_timeout: float | None = None
