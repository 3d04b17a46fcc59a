"""Tests for the process tree index."""

from unittest.mock import AsyncMock, patch

import pytest

from claude_island.process.tree import (
    ProcessTree,
    ProcessTreeBuilder,
    ancestors,
    find_descendants,
    find_terminal_pid,
    is_descendant,
    is_in_tmux,
    parse_lsof_cwd,
    parse_ps_output,
)


PS_OUTPUT = """\
  PID  PPID TTY      COMM
    1     0 ??       launchd
  100     1 ??       /Applications/iTerm.app/Contents/MacOS/iTerm2
  200   100 ttys001  -zsh
  300   200 ttys001  tmux
  400   300 ttys002  node
  500   400 ttys002  claude
  600     1 -        cron
garbage line
"""


@pytest.fixture
def processes():
    return parse_ps_output(PS_OUTPUT)


class TestParsing:
    def test_parse_ps_output(self, processes) -> None:
        assert set(processes) == {1, 100, 200, 300, 400, 500, 600}
        assert processes[500].ppid == 400
        assert processes[500].command == "claude"
        assert processes[200].tty == "ttys001"
        assert processes[100].tty is None
        assert processes[600].tty is None

    def test_command_with_spaces(self) -> None:
        processes = parse_ps_output("  42  1 pts/0 Google Chrome Helper\n")
        assert processes[42].command == "Google Chrome Helper"

    def test_parse_lsof_cwd(self) -> None:
        output = "p500\nfcwd\nn/Users/me/project\nftxt\nn/usr/bin/node\n"
        assert parse_lsof_cwd(output) == "/Users/me/project"
        assert parse_lsof_cwd("p500\nftxt\nn/bin\n") is None


class TestQueries:
    def test_is_in_tmux(self, processes) -> None:
        assert is_in_tmux(500, processes)
        assert not is_in_tmux(200, processes)
        assert not is_in_tmux(9999, processes)

    def test_find_terminal_pid(self, processes) -> None:
        assert find_terminal_pid(500, processes) == 100
        assert find_terminal_pid(600, processes) is None

    def test_ancestors(self, processes) -> None:
        assert ancestors(500, processes) == [500, 400, 300, 200, 100]

    def test_is_descendant(self, processes) -> None:
        assert is_descendant(500, 200, processes)
        assert is_descendant(500, 500, processes)
        assert not is_descendant(200, 500, processes)

    def test_find_descendants_indexed_and_flat_agree(self, processes) -> None:
        tree = ProcessTree.from_info(processes)

        assert find_descendants(200, tree) == {300, 400, 500}
        assert find_descendants(200, processes) == {300, 400, 500}
        assert find_descendants(1, tree) == find_descendants(1, processes)
        assert find_descendants(500, tree) == set()

    def test_queries_accept_indexed_tree(self, processes) -> None:
        tree = ProcessTree.from_info(processes)
        assert is_in_tmux(500, tree)
        assert find_terminal_pid(500, tree) == 100
        assert len(tree) == 7

    def test_cycle_is_bounded(self) -> None:
        looped = parse_ps_output("10 11 ? a\n11 10 ? b\n")
        assert not is_in_tmux(10, looped)
        assert not is_descendant(10, 99, looped)
        assert find_descendants(10, looped) == {10, 11}


class TestProcessTreeBuilder:
    async def test_build_tree(self) -> None:
        with patch(
            "claude_island.process.tree.run_command_or_none",
            AsyncMock(return_value=PS_OUTPUT),
        ) as run:
            tree = await ProcessTreeBuilder().build_indexed_tree()

        run.assert_awaited_once_with("ps", ["-eo", "pid,ppid,tty,comm"])
        assert tree.children_by_pid[400] == [500]

    async def test_build_tree_when_ps_fails(self) -> None:
        with patch(
            "claude_island.process.tree.run_command_or_none", AsyncMock(return_value=None)
        ):
            assert await ProcessTreeBuilder().build_tree() == {}

    async def test_get_working_directory(self) -> None:
        with patch(
            "claude_island.process.tree.run_command_or_none",
            AsyncMock(return_value="p1\nfcwd\nn/tmp/work\n"),
        ) as run:
            assert await ProcessTreeBuilder().get_working_directory(1) == "/tmp/work"

        run.assert_awaited_once_with("lsof", ["-p", "1", "-Fn"])
