from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import structlog
from structlog.testing import capture_logs

from claude_duplex.errors import (
    ClaudeSDKError,
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ControlTimeoutError,
    MessageTooLargeError,
    ProcessError,
    install_hint,
)
from claude_duplex.logging import get_logger, log_pipeline, setup_logging


def test_not_found_includes_path() -> None:
    error = CLINotFoundError("Claude Code not found at", cli_path="/x/claude")

    assert str(error) == "Claude Code not found at: /x/claude"
    assert error.cli_path == "/x/claude"
    assert isinstance(error, CLIConnectionError)


def test_process_error_message() -> None:
    error = ProcessError("Command failed", exit_code=2, stderr="bad flag")

    assert str(error) == "Command failed (exit code: 2)\nError output: bad flag"
    assert error.exit_code == 2
    assert str(ProcessError("Command failed")) == "Command failed"


def test_error_hierarchy() -> None:
    assert issubclass(MessageTooLargeError, CLIJSONDecodeError)
    assert issubclass(ControlTimeoutError, TimeoutError)
    for cls in (CLIConnectionError, ProcessError, CLIJSONDecodeError, ControlTimeoutError):
        assert issubclass(cls, ClaudeSDKError)


def test_install_hint_mentions_npm() -> None:
    assert "npm install -g @anthropic-ai/claude-code" in install_hint()


def test_log_pipeline_logs_at_debug() -> None:
    logger = MagicMock()

    log_pipeline(logger, "subprocess.stdin", size=12)

    logger.debug.assert_called_once_with("subprocess.stdin", size=12)
    logger.info.assert_not_called()


@pytest.fixture
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_events_carry_structured_fields(_reset_structlog: None) -> None:
    with capture_logs() as captured:
        get_logger("claude_duplex.test").info("client.connected", pid=42)

    assert captured == [{"event": "client.connected", "pid": 42, "log_level": "info"}]

    setup_logging("debug", json=True)
    assert structlog.is_configured()
