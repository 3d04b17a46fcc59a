"""Tests for transcript interrupt and sub-agent watchers."""

import threading

from pathlib import Path
from typing import List

import pytest

from claude_island.transcript.models import SubagentToolInfo
from claude_island.transcript.parser import ConversationParser
from claude_island.transcript.watchers import (
    AgentFileWatcher,
    AgentFileWatcherManager,
    InterruptWatcher,
    InterruptWatcherManager,
    _TranscriptFileWatcher,
    is_interrupt_line,
)
from tests.utils import (
    assistant_entry,
    jsonl,
    tool_result_entry,
    tool_use,
    user_entry,
    write_agent_transcript,
    write_transcript,
)


SESSION = "session-w"
CWD = "/work/watched"

# watchdog delivers events from its own thread
EVENT_TIMEOUT = 5.0


class TestIsInterruptLine:
    def test_user_interrupt_markers(self) -> None:
        assert is_interrupt_line(jsonl(user_entry("u1", "[Request interrupted by user]")))
        assert is_interrupt_line(
            jsonl(user_entry("u1", "[Request interrupted by user for tool use]"))
        )

    def test_errored_tool_result(self) -> None:
        line = jsonl(
            tool_result_entry(
                "u1", "toolu_1", content="The user doesn't want to proceed", is_error=True
            )
        )
        assert is_interrupt_line(line)

    def test_successful_tool_result_is_not_an_interrupt(self) -> None:
        line = jsonl(tool_result_entry("u1", "toolu_1", content="Interrupted by user"))
        assert not is_interrupt_line(line)

    def test_interrupted_flag(self) -> None:
        line = jsonl(
            tool_result_entry("u1", "toolu_1", tool_use_result={"interrupted": True})
        )
        assert is_interrupt_line(line)

    def test_ordinary_lines(self) -> None:
        assert not is_interrupt_line(jsonl(user_entry("u1", "please continue")))
        assert not is_interrupt_line(
            jsonl(assistant_entry("a1", [{"type": "text", "text": "interrupted by user"}]))
        )


class TestInterruptWatcher:
    def test_existing_content_is_ignored_and_appends_detected(self, projects_dir: Path) -> None:
        path = write_transcript(
            projects_dir, SESSION, CWD, [user_entry("u0", "[Request interrupted by user]")]
        )
        seen = threading.Event()
        calls: List[str] = []

        def on_interrupt(session_id: str) -> None:
            calls.append(session_id)
            seen.set()

        watcher = InterruptWatcher(SESSION, CWD, on_interrupt, projects_dir)
        assert watcher.start()
        try:
            assert calls == []
            with path.open("a", encoding="utf-8") as handle:
                handle.write(jsonl(user_entry("u1", "[Request interrupted by user]")))

            assert seen.wait(EVENT_TIMEOUT)
            assert calls[0] == SESSION
        finally:
            watcher.stop()

    def test_file_created_after_start(self, projects_dir: Path) -> None:
        directory = write_transcript(projects_dir, "other", CWD, []).parent
        seen = threading.Event()

        watcher = InterruptWatcher(SESSION, CWD, lambda _: seen.set(), projects_dir)
        assert watcher.start()
        try:
            path = directory / f"{SESSION}.jsonl"
            path.write_text(jsonl(user_entry("u0", "hello")))
            # Lines written before the watcher opens the file are skipped, so keep writing
            for _ in range(int(EVENT_TIMEOUT / 0.2)):
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(jsonl(user_entry("u1", "[Request interrupted by user]")))
                if seen.wait(0.2):
                    break

            assert seen.is_set()
        finally:
            watcher.stop()

    def test_marker_split_across_writes(self, projects_dir: Path) -> None:
        path = write_transcript(projects_dir, SESSION, CWD, [user_entry("u0", "hello")])
        line = jsonl(user_entry("u1", "[Request interrupted by user]"))
        watcher = InterruptWatcher(SESSION, CWD, lambda _: None, projects_dir)
        assert watcher._open()
        watcher._on_opened()
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(line[:30])
            assert not watcher._read_changes()

            with path.open("a", encoding="utf-8") as handle:
                handle.write(line[30:])
            assert watcher._read_changes()
            assert watcher._offset == path.stat().st_size
        finally:
            watcher.stop()

    def test_read_without_open_file(self, projects_dir: Path) -> None:
        watcher = InterruptWatcher(SESSION, CWD, lambda _: None, projects_dir)
        assert not watcher._read_changes()

    def test_missing_directory(self, projects_dir: Path) -> None:
        watcher = InterruptWatcher(SESSION, "/nowhere", lambda _: None, projects_dir)
        assert not watcher.start()
        assert not watcher.is_running

    def test_stop_is_idempotent(self, projects_dir: Path) -> None:
        write_transcript(projects_dir, SESSION, CWD, [])
        watcher = InterruptWatcher(SESSION, CWD, lambda _: None, projects_dir)
        watcher.start()

        watcher.stop()
        watcher.stop()

        assert not watcher.is_running


class TestAgentFileWatcher:
    def test_reports_tools_on_start_and_on_change(self, projects_dir: Path) -> None:
        path = write_agent_transcript(
            projects_dir,
            "agent7",
            CWD,
            [assistant_entry("a1", [tool_use("t1", "Read", {"file_path": "/x.py"})])],
        )
        updates: List[List[SubagentToolInfo]] = []
        changed = threading.Event()

        def on_update(session_id: str, task_tool_id: str, tools: List[SubagentToolInfo]) -> None:
            assert (session_id, task_tool_id) == (SESSION, "toolu_task")
            updates.append(tools)
            if len(tools) == 2:
                changed.set()

        watcher = AgentFileWatcher(
            SESSION, "toolu_task", "agent7", CWD, on_update, ConversationParser(projects_dir)
        )
        assert watcher.start()
        try:
            assert [tool.id for tool in updates[0]] == ["t1"]

            with path.open("a", encoding="utf-8") as handle:
                handle.write(jsonl(assistant_entry("a2", [tool_use("t2", "Bash", {"command": "ls"})])))

            assert changed.wait(EVENT_TIMEOUT)
            assert [tool.name for tool in updates[-1]] == ["Read", "Bash"]
        finally:
            watcher.stop()


class TestManagers:
    def test_interrupt_manager(self, projects_dir: Path) -> None:
        write_transcript(projects_dir, SESSION, CWD, [])
        manager = InterruptWatcherManager(lambda _: None, projects_dir)

        manager.start_watching(SESSION, CWD)
        manager.start_watching(SESSION, CWD)
        assert manager.is_watching(SESSION)

        manager.stop_all()
        assert not manager.is_watching(SESSION)

    def test_agent_manager_keys_by_session_and_task(self, projects_dir: Path) -> None:
        write_agent_transcript(projects_dir, "agent1", CWD, [])
        manager = AgentFileWatcherManager(lambda *args: None, ConversationParser(projects_dir))

        manager.start_watching(SESSION, "task-a", "agent1", CWD)
        manager.start_watching(SESSION, "task-b", "agent1", CWD)
        manager.start_watching("other", "task-a", "agent1", CWD)

        manager.stop_watching_session(SESSION)

        assert not manager.is_watching(SESSION, "task-a")
        assert not manager.is_watching(SESSION, "task-b")
        assert manager.is_watching("other", "task-a")
        manager.stop_all()


class TestBaseWatcher:
    def test_cannot_be_instantiated(self, projects_dir: Path) -> None:
        with pytest.raises(TypeError):
            _TranscriptFileWatcher(projects_dir / "x.jsonl", "base")  # type: ignore[abstract]
