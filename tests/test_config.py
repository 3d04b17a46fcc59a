"""Tests for configuration loading."""

from pathlib import Path

import pytest

from pydantic import ValidationError

from claude_island.config import Settings, load_config
from claude_island.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from the developer's environment and any .env file."""
    monkeypatch.chdir(tmp_path)
    for name in ("SOCKET_PATH", "SOCKET_MODE", "DEBUG", "LOG_LEVEL", "PERMISSION_TIMEOUT_SECONDS"):
        monkeypatch.delenv(f"CLAUDE_ISLAND_{name}", raising=False)


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()

        assert settings.socket_path == "/tmp/claude-island.sock"
        assert settings.socket_mode == 0o600
        assert settings.permission_timeout_seconds == 300
        assert settings.read_budget_seconds == 0.5
        assert settings.max_responded_permissions == 100
        assert (settings.retry_base_delay, settings.retry_max_delay) == (0.5, 10.0)
        assert settings.retry_max_attempts == 5
        assert settings.claude_projects_dir == Path("~/.claude/projects").expanduser()
        assert settings.is_production

    def test_environment_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("CLAUDE_ISLAND_SOCKET_PATH", "/tmp/other.sock")
        monkeypatch.setenv("CLAUDE_ISLAND_PERMISSION_TIMEOUT_SECONDS", "30")

        settings = Settings()

        assert settings.socket_path == "/tmp/other.sock"
        assert settings.permission_timeout_seconds == 30

    def test_dotenv_file(self, tmp_path) -> None:
        (tmp_path / ".env").write_text("CLAUDE_ISLAND_DEBUG=true\n")
        assert Settings().debug

    @pytest.mark.parametrize("value,expected", [("0600", 0o600), ("0o644", 0o644), (0o640, 0o640)])
    def test_socket_mode_accepts_octal(self, value, expected: int) -> None:
        assert Settings(socket_mode=value).socket_mode == expected

    def test_socket_mode_range(self) -> None:
        with pytest.raises(ValidationError):
            Settings(socket_mode=0o7777)

    def test_log_level_is_normalized(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(log_level="chatty")

    def test_cross_field_validation(self) -> None:
        with pytest.raises(ValidationError):
            Settings(retry_base_delay=20, retry_max_delay=10)
        with pytest.raises(ValidationError):
            Settings(read_poll_seconds=1, read_budget_seconds=0.5)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(permission_timeout_seconds=0)


class TestLoadConfig:
    def test_overrides_win_and_none_is_ignored(self, monkeypatch) -> None:
        monkeypatch.setenv("CLAUDE_ISLAND_SOCKET_PATH", "/tmp/env.sock")

        assert load_config(socket_path=None).socket_path == "/tmp/env.sock"
        assert load_config(socket_path="/tmp/cli.sock").socket_path == "/tmp/cli.sock"

    def test_invalid_configuration(self) -> None:
        with pytest.raises(ConfigurationError):
            load_config(retry_base_delay=-1)
