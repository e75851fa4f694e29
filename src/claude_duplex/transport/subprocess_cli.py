from __future__ import annotations

import contextlib
import os
import subprocess
from pathlib import Path
from typing import Any

import anyio
from anyio.abc import ByteSendStream, Process

from ..command import (
    MINIMUM_CLI_VERSION,
    SKIP_VERSION_CHECK_ENV,
    build_command,
    build_env,
    find_cli,
    parse_version,
    version_compare,
)
from ..errors import CLIConnectionError, CLINotFoundError, ProcessError
from ..framing import JsonLineReader
from ..logging import get_logger, log_pipeline
from ..options import ClaudeAgentOptions
from ..settings import DuplexSettings

logger = get_logger(__name__)

VERSION_CHECK_TIMEOUT_S = 2.0
EXIT_WAIT_TIMEOUT_S = 5.0


async def check_cli_version(cli_path: str | Path) -> str | None:
    """Warn when the CLI is older than the minimum; never fails the connect."""
    if os.environ.get(SKIP_VERSION_CHECK_ENV):
        return None
    try:
        with anyio.fail_after(VERSION_CHECK_TIMEOUT_S):
            result = await anyio.run_process([str(cli_path), "-v"], check=False)
    except (OSError, TimeoutError) as exc:
        logger.debug("cli.version_check_failed", error=str(exc))
        return None
    version = parse_version(result.stdout.decode("utf-8", errors="replace"))
    if version is not None and version_compare(version, MINIMUM_CLI_VERSION) < 0:
        logger.warning(
            "cli.version_unsupported",
            version=version,
            minimum=MINIMUM_CLI_VERSION,
            cli_path=str(cli_path),
        )
    return version


class _ProcessOutput:
    def __init__(self, reader: JsonLineReader, transport: SubprocessCLITransport):
        self._reader = reader
        self._transport = transport

    async def receive(self) -> Any:
        try:
            value = await self._reader.receive()
        except anyio.EndOfStream:
            await self._transport._check_exit()
            raise
        log_pipeline(logger, "subprocess.stdout", value_type=_value_type(value))
        return value


class SubprocessCLITransport:
    """Owns one CLI child process and its stdin/stdout pipes."""

    def __init__(
        self,
        options: ClaudeAgentOptions | None = None,
        *,
        streaming: bool = True,
        prompt: str | None = None,
        settings: DuplexSettings | None = None,
    ) -> None:
        self._options = options or ClaudeAgentOptions()
        self._settings = settings or DuplexSettings()
        self._streaming = streaming
        self._prompt = prompt
        self._process: Process | None = None
        self._stdin: ByteSendStream | None = None
        self._output: _ProcessOutput | None = None
        self._output_taken = False
        self._write_lock = anyio.Lock()
        self._ready = False
        self._closing = False

    @property
    def streaming(self) -> bool:
        return self._streaming

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def max_buffer_size(self) -> int:
        if self._options.max_buffer_size is not None:
            return self._options.max_buffer_size
        return self._settings.max_buffer_size

    def is_ready(self) -> bool:
        return self._ready

    async def connect(self) -> None:
        if self._process is not None:
            return

        cli_path = find_cli(self._options.cli_path or self._settings.cli_path)
        if not self._settings.skip_version_check:
            await check_cli_version(cli_path)

        cmd = build_command(
            cli_path, self._options, streaming=self._streaming, prompt=self._prompt
        )
        kwargs: dict[str, Any] = {}
        if self._options.user is not None:
            kwargs["user"] = self._options.user
        cwd = self._options.cwd
        try:
            process = await anyio.open_process(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=self._options.stderr,
                cwd=cwd,
                env=build_env(self._options),
                **kwargs,
            )
        except FileNotFoundError as exc:
            if cwd is not None and not Path(cwd).exists():
                raise CLIConnectionError(
                    f"Working directory does not exist: {cwd}"
                ) from exc
            raise CLINotFoundError(
                "Claude Code not found at", cli_path=str(cli_path)
            ) from exc
        except OSError as exc:
            raise CLIConnectionError(f"Failed to start Claude Code: {exc}") from exc

        self._process = process
        self._stdin = process.stdin
        if process.stdout is None:
            raise CLIConnectionError("Failed to capture stdout of Claude Code")
        self._output = _ProcessOutput(
            JsonLineReader(process.stdout, self.max_buffer_size), self
        )
        logger.info(
            "subprocess.started",
            pid=process.pid,
            streaming=self._streaming,
            cli_path=str(cli_path),
        )
        if not self._streaming:
            await self._close_stdin()
        self._ready = True

    def read_messages(self) -> _ProcessOutput:
        if self._output is None:
            raise CLIConnectionError("Not connected")
        if self._output_taken:
            raise CLIConnectionError("Process output is already being read")
        self._output_taken = True
        return self._output

    async def write(self, data: str) -> None:
        async with self._write_lock:
            if not self._ready or self._stdin is None:
                raise CLIConnectionError("Transport is not ready for writing")
            process = self._process
            if process is not None and process.returncode is not None:
                raise CLIConnectionError(
                    "Cannot write to terminated process "
                    f"(exit code: {process.returncode})"
                )
            try:
                await self._stdin.send(data.encode("utf-8"))
            except (
                OSError,
                anyio.BrokenResourceError,
                anyio.ClosedResourceError,
            ) as exc:
                self._ready = False
                logger.error(
                    "subprocess.write_failed",
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
                raise CLIConnectionError(
                    f"Failed to write to process stdin: {exc}"
                ) from exc
        log_pipeline(logger, "subprocess.stdin", size=len(data))

    async def end_input(self) -> None:
        async with self._write_lock:
            await self._close_stdin()

    async def close(self) -> None:
        self._closing = True
        self._ready = False
        process, self._process = self._process, None
        self._stdin = None
        if process is None:
            return
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError, OSError):
                process.kill()
        with anyio.CancelScope(shield=True):
            with contextlib.suppress(Exception):
                await process.aclose()
        logger.info("subprocess.closed", pid=process.pid, rc=process.returncode)

    async def _close_stdin(self) -> None:
        stdin, self._stdin = self._stdin, None
        if stdin is not None:
            with contextlib.suppress(Exception):
                await stdin.aclose()

    async def _check_exit(self) -> None:
        process = self._process
        if process is None or self._closing:
            return
        with anyio.move_on_after(EXIT_WAIT_TIMEOUT_S):
            await process.wait()
        rc = process.returncode
        if rc is not None and rc > 0:
            raise ProcessError("Command failed", exit_code=rc)

    async def __aenter__(self) -> SubprocessCLITransport:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def __del__(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError, OSError):
                process.kill()


def _value_type(value: Any) -> str | None:
    if isinstance(value, dict):
        kind = value.get("type")
        return kind if isinstance(kind, str) else None
    return type(value).__name__
