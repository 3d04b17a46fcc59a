"""Tests for running external commands."""

import pytest

from claude_island.exceptions import CommandFailedError, CommandNotFoundError, ProcessExecutorError
from claude_island.process.executor import run_command, run_command_or_none


class TestRunCommand:
    async def test_returns_stdout(self) -> None:
        assert await run_command("echo", ["hello"]) == "hello\n"

    async def test_missing_executable(self) -> None:
        with pytest.raises(CommandNotFoundError):
            await run_command("claude-island-no-such-binary")

    async def test_non_zero_exit(self) -> None:
        with pytest.raises(CommandFailedError) as info:
            await run_command("sh", ["-c", "echo boom >&2; exit 3"])

        assert info.value.exit_code == 3
        assert info.value.stderr == "boom"

    async def test_timeout(self) -> None:
        with pytest.raises(ProcessExecutorError):
            await run_command("sleep", ["5"], timeout=0.1)

    async def test_or_none(self) -> None:
        assert await run_command_or_none("claude-island-no-such-binary") is None
        assert await run_command_or_none("sh", ["-c", "exit 1"]) is None
        assert await run_command_or_none("echo", ["ok"]) == "ok\n"
