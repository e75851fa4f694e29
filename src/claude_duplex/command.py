"""argv and environment for launching the Claude Code CLI."""

from __future__ import annotations

import json
import os
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import msgspec

from . import __version__
from .errors import CLINotFoundError, install_hint
from .logging import get_logger
from .options import ClaudeAgentOptions, SystemPromptPreset, ToolsPreset

logger = get_logger(__name__)

ENTRYPOINT = "sdk-py"
MINIMUM_CLI_VERSION = "2.0.0"
SKIP_VERSION_CHECK_ENV = "CLAUDE_AGENT_SDK_SKIP_VERSION_CHECK"


def fallback_cli_locations(home: Path | None = None) -> list[Path]:
    home = home or Path.home()
    return [
        home / ".npm-global" / "bin" / "claude",
        Path("/usr/local/bin/claude"),
        home / ".local" / "bin" / "claude",
        home / "node_modules" / ".bin" / "claude",
        home / ".yarn" / "bin" / "claude",
        home / ".claude" / "local" / "claude",
    ]


def find_cli(
    cli_path: str | Path | None = None,
    *,
    home: Path | None = None,
) -> Path:
    if cli_path:
        return Path(cli_path).expanduser()
    found = shutil.which("claude")
    if found:
        return Path(found)
    for candidate in fallback_cli_locations(home):
        if candidate.is_file():
            return candidate
    raise CLINotFoundError(install_hint())


def build_command(
    cli_path: str | Path,
    options: ClaudeAgentOptions,
    *,
    streaming: bool,
    prompt: str | None = None,
) -> list[str]:
    cmd = [str(cli_path), "--output-format", "stream-json", "--verbose"]

    match options.system_prompt:
        case None:
            cmd.extend(["--system-prompt", ""])
        case str() as text:
            cmd.extend(["--system-prompt", text])
        case SystemPromptPreset(append=append) if append is not None:
            cmd.extend(["--append-system-prompt", append])

    match options.tools:
        case ToolsPreset():
            cmd.extend(["--tools", "default"])
        case list() as tools:
            cmd.extend(["--tools", ",".join(tools)])

    if options.allowed_tools:
        cmd.extend(["--allowedTools", ",".join(options.allowed_tools)])
    if options.max_turns is not None:
        cmd.extend(["--max-turns", str(options.max_turns)])
    if options.max_budget_usd is not None:
        cmd.extend(["--max-budget-usd", str(options.max_budget_usd)])
    if options.disallowed_tools:
        cmd.extend(["--disallowedTools", ",".join(options.disallowed_tools)])
    if options.model:
        cmd.extend(["--model", options.model])
    if options.fallback_model:
        cmd.extend(["--fallback-model", options.fallback_model])
    if options.betas:
        cmd.extend(["--betas", ",".join(options.betas)])
    if options.permission_prompt_tool_name:
        cmd.extend(["--permission-prompt-tool", options.permission_prompt_tool_name])
    if options.permission_mode:
        cmd.extend(["--permission-mode", options.permission_mode])
    if options.continue_conversation:
        cmd.append("--continue")
    if options.resume:
        cmd.extend(["--resume", options.resume])

    settings_value = build_settings_value(options)
    if settings_value is not None:
        cmd.extend(["--settings", settings_value])

    for directory in options.add_dirs:
        cmd.extend(["--add-dir", str(directory)])

    mcp_config = build_mcp_config(options.mcp_servers)
    if mcp_config is not None:
        cmd.extend(["--mcp-config", mcp_config])

    if options.include_partial_messages:
        cmd.append("--include-partial-messages")
    if options.fork_session:
        cmd.append("--fork-session")
    if options.agents is not None:
        cmd.extend(["--agents", msgspec.json.encode(options.agents).decode()])

    cmd.extend(["--setting-sources", ",".join(options.setting_sources or [])])

    for plugin in options.plugins:
        if plugin.type == "local":
            cmd.extend(["--plugin-dir", plugin.path])

    for flag, value in options.extra_args.items():
        cmd.append(f"--{flag}")
        if value is not None:
            cmd.append(value)

    if options.max_thinking_tokens is not None:
        cmd.extend(["--max-thinking-tokens", str(options.max_thinking_tokens)])

    output_format = options.output_format
    if (
        output_format
        and output_format.get("type") == "json_schema"
        and "schema" in output_format
    ):
        cmd.extend(["--json-schema", json.dumps(output_format["schema"])])

    if streaming:
        cmd.extend(["--input-format", "stream-json"])
    elif prompt is not None:
        cmd.extend(["--print", "--", prompt])
    return cmd


def build_settings_value(options: ClaudeAgentOptions) -> str | None:
    """``--settings`` argument; sandbox config forces a merged JSON object."""
    if options.settings is None and options.sandbox is None:
        return None
    if options.sandbox is None:
        return options.settings

    merged: dict[str, Any] = {}
    if options.settings is not None:
        raw = options.settings.strip()
        if not (raw.startswith("{") and raw.endswith("}")):
            try:
                raw = Path(raw).read_text(encoding="utf-8")
            except OSError as exc:
                logger.warning("settings.read_failed", path=raw, error=str(exc))
                raw = ""
        try:
            parsed = json.loads(raw) if raw else {}
        except json.JSONDecodeError as exc:
            logger.warning("settings.invalid_json", error=str(exc))
            parsed = {}
        if isinstance(parsed, dict):
            merged.update(parsed)
    merged["sandbox"] = options.sandbox
    return json.dumps(merged)


def build_mcp_config(
    servers: Mapping[str, Mapping[str, Any]] | str | Path | None,
) -> str | None:
    if servers is None:
        return None
    if isinstance(servers, (str, Path)):
        return str(servers)
    external = {
        name: dict(config)
        for name, config in servers.items()
        if config.get("type") != "sdk"
    }
    if not external:
        return None
    return json.dumps({"mcpServers": external})


def build_env(
    options: ClaudeAgentOptions,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env.update(options.env)
    env["CLAUDE_CODE_ENTRYPOINT"] = ENTRYPOINT
    env["CLAUDE_AGENT_SDK_VERSION"] = __version__
    if options.enable_file_checkpointing:
        env["CLAUDE_CODE_ENABLE_SDK_FILE_CHECKPOINTING"] = "true"
    if options.cwd is not None:
        env["PWD"] = str(options.cwd)
    return env


def parse_version(output: str) -> str | None:
    """First dotted version token in ``claude -v`` output."""
    for token in output.split():
        head = token.split("-", 1)[0]
        parts = head.split(".")
        if len(parts) >= 2 and all(part.isdigit() for part in parts):
            return head
    return None


def version_compare(left: str, right: str) -> int:
    """-1/0/1 comparison of dotted numeric versions; missing parts are 0."""
    a = [int(part) if part.isdigit() else 0 for part in left.split(".")]
    b = [int(part) if part.isdigit() else 0 for part in right.split(".")]
    width = max(len(a), len(b))
    a += [0] * (width - len(a))
    b += [0] * (width - len(b))
    return (a > b) - (a < b)
