"""Tests for the tmux client."""

from unittest.mock import AsyncMock, call, patch

import pytest

from claude_island.exceptions import (
    CommandFailedError,
    CommandNotFoundError,
    TmuxCommandError,
    TmuxTargetNotFoundError,
)
from claude_island.process.tree import parse_ps_output
from claude_island.tmux.client import TmuxClient, find_tmux_target


TARGET = "main:1.0"


def keys(text: str):
    return call("tmux", ["send-keys", "-t", TARGET, "-l", text])


ENTER = call("tmux", ["send-keys", "-t", TARGET, "Enter"])


@pytest.fixture
def run_command():
    with patch("claude_island.tmux.client.run_command", AsyncMock(return_value="")) as mock:
        yield mock


class TestTmuxClient:
    async def test_approve_once(self, run_command) -> None:
        assert await TmuxClient(TARGET).approve_once()
        assert run_command.await_args_list == [keys("1"), ENTER]

    async def test_approve_always(self, run_command) -> None:
        assert await TmuxClient(TARGET).approve_always()
        assert run_command.await_args_list == [keys("2"), ENTER]

    async def test_reject_with_message(self, run_command) -> None:
        assert await TmuxClient(TARGET).reject("use the other file")
        assert run_command.await_args_list == [
            keys("n"),
            ENTER,
            keys("use the other file"),
            ENTER,
        ]

    async def test_reject_without_message(self, run_command) -> None:
        assert await TmuxClient(TARGET).reject()
        assert run_command.await_count == 2

    async def test_send_keys_without_enter(self, run_command) -> None:
        assert await TmuxClient(TARGET).send_keys("abc", press_enter=False)
        assert run_command.await_args_list == [keys("abc")]

    async def test_failure_returns_false(self, run_command) -> None:
        run_command.side_effect = CommandFailedError("tmux send-keys", 1, "can't find pane: main:1.0")
        assert not await TmuxClient(TARGET).send_message("hi")

    async def test_is_pane_active(self, run_command) -> None:
        assert await TmuxClient(TARGET).is_pane_active()
        run_command.side_effect = CommandFailedError("tmux display-message", 1, "can't find pane")
        assert not await TmuxClient(TARGET).is_pane_active()


class TestFindTmuxTarget:
    PROCESSES = parse_ps_output(
        "1 0 ? init\n300 1 ? tmux\n310 300 pts/1 bash\n320 310 pts/1 claude\n410 300 pts/2 zsh\n"
    )

    async def test_matches_pane_shell_ancestor(self, run_command) -> None:
        run_command.return_value = "main:0.0 410\nmain:1.0 310\nbroken\nmain:2.0 x\n"

        assert await find_tmux_target(320, self.PROCESSES) == "main:1.0"

    async def test_no_matching_pane(self, run_command) -> None:
        run_command.return_value = "main:0.0 410\n"
        assert await find_tmux_target(320, self.PROCESSES) is None

    async def test_missing_tmux(self, run_command) -> None:
        run_command.side_effect = CommandNotFoundError("tmux command not found")
        with pytest.raises(TmuxCommandError):
            await find_tmux_target(320, self.PROCESSES)

    async def test_target_not_found(self, run_command) -> None:
        run_command.side_effect = CommandFailedError("tmux list-panes", 1, "can't find session")
        with pytest.raises(TmuxTargetNotFoundError):
            await find_tmux_target(320, self.PROCESSES)
