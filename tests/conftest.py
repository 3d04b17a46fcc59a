"""Root pytest configuration for all tests."""

import shutil
import tempfile

from pathlib import Path
from typing import Any, Callable, Dict

import pytest

from claude_island.config.settings import Settings
from claude_island.hooks.events import HookEvent


@pytest.fixture
def socket_path():
    """Short socket path; AF_UNIX paths are limited to ~104 bytes."""
    directory = tempfile.mkdtemp(prefix="ci-", dir="/tmp")
    yield str(Path(directory) / "hook.sock")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    path = tmp_path / "projects"
    path.mkdir()
    return path


@pytest.fixture
def settings(socket_path: str, projects_dir: Path) -> Settings:
    return Settings(
        socket_path=socket_path,
        permission_timeout_seconds=5,
        read_budget_seconds=0.5,
        read_poll_seconds=0.05,
        retry_base_delay=0.01,
        retry_max_delay=0.05,
        claude_projects_dir=projects_dir,
        log_file="",
    )


@pytest.fixture
def make_event() -> Callable[..., HookEvent]:
    """Factory for hook events with sensible defaults."""

    def factory(**overrides: Any) -> HookEvent:
        data: Dict[str, Any] = {
            "session_id": "session-1",
            "cwd": "/work/project",
            "event": "Notification",
            "status": "notification",
        }
        data.update(overrides)
        return HookEvent(**data)

    return factory
