from __future__ import annotations

from typing import Any


class ClaudeSDKError(Exception):
    """Base class for every error raised by claude_duplex."""


class ConfigError(ClaudeSDKError, RuntimeError):
    pass


class CLIConnectionError(ClaudeSDKError):
    """The child process could not be reached (spawn, pipes, not connected)."""


class CLINotFoundError(CLIConnectionError):
    def __init__(
        self,
        message: str = "Claude Code not found",
        cli_path: str | None = None,
    ) -> None:
        self.cli_path = cli_path
        if cli_path is not None:
            message = f"{message}: {cli_path}"
        super().__init__(message)


class ProcessError(ClaudeSDKError):
    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stderr: str | None = None,
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        if exit_code is not None:
            message = f"{message} (exit code: {exit_code})"
        if stderr:
            message = f"{message}\nError output: {stderr}"
        super().__init__(message)


class CLIJSONDecodeError(ClaudeSDKError):
    def __init__(self, message: str, line: str | None = None) -> None:
        self.line = line
        super().__init__(message)


class MessageTooLargeError(CLIJSONDecodeError):
    def __init__(self, max_buffer_size: int, size: int) -> None:
        self.max_buffer_size = max_buffer_size
        self.size = size
        super().__init__(
            "JSON message exceeded maximum buffer size of "
            f"{max_buffer_size} bytes (got {size})"
        )


class MessageParseError(ClaudeSDKError):
    def __init__(self, message: str, data: Any = None) -> None:
        self.data = data
        super().__init__(message)


class ControlTimeoutError(ClaudeSDKError, TimeoutError):
    pass


class ControlProtocolError(ClaudeSDKError):
    pass


def install_hint() -> str:
    return "\n".join(
        [
            "Claude Code not found. Install with:",
            "  npm install -g @anthropic-ai/claude-code",
            "",
            "If already installed locally, try:",
            '  export PATH="$HOME/node_modules/.bin:$PATH"',
            "",
            "Or pass the path explicitly:",
            "  ClaudeAgentOptions(cli_path='/path/to/claude')",
        ]
    )
