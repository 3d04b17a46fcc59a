"""Configuration management using Pydantic Settings.

Features:
- Environment variable loading (``CLAUDE_ISLAND_`` prefix)
- Type validation
- Default values
- Computed properties
"""

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from claude_island.utils.constants import (
    CLAUDE_PROJECTS_DIR,
    DEFAULT_MAX_RESPONDED_PERMISSIONS,
    DEFAULT_PERMISSION_TIMEOUT_SECONDS,
    DEFAULT_READ_BUDGET_SECONDS,
    DEFAULT_READ_POLL_SECONDS,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_SOCKET_MODE,
    DEFAULT_SOCKET_PATH,
    LARGE_FILE_TAIL_BYTES,
    MAX_FULL_LOAD_FILE_SIZE,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Hook socket
    socket_path: str = Field(
        DEFAULT_SOCKET_PATH, description="Unix socket path the hook script connects to"
    )
    socket_mode: int = Field(
        DEFAULT_SOCKET_MODE,
        description="File mode applied to the socket after bind (octal string accepted)",
    )
    read_budget_seconds: float = Field(
        DEFAULT_READ_BUDGET_SECONDS,
        gt=0,
        description="Wall-clock budget for reading one event from a connection",
    )
    read_poll_seconds: float = Field(
        DEFAULT_READ_POLL_SECONDS,
        gt=0,
        description="Poll slice while waiting for connection data",
    )

    # Permission requests
    permission_timeout_seconds: float = Field(
        DEFAULT_PERMISSION_TIMEOUT_SECONDS,
        gt=0,
        description="How long a permission request connection is held open",
    )
    max_responded_permissions: int = Field(
        DEFAULT_MAX_RESPONDED_PERMISSIONS,
        ge=2,
        description="Bound of the already-responded tool_use_id set",
    )

    # Bind retry
    retry_base_delay: float = Field(DEFAULT_RETRY_BASE_DELAY, gt=0)
    retry_max_delay: float = Field(DEFAULT_RETRY_MAX_DELAY, gt=0)
    retry_max_attempts: int = Field(DEFAULT_RETRY_MAX_ATTEMPTS, ge=0)

    # Transcripts
    claude_projects_dir: Path = Field(
        Path(CLAUDE_PROJECTS_DIR), description="Root of Claude Code transcript folders"
    )
    max_full_load_file_size: int = Field(
        MAX_FULL_LOAD_FILE_SIZE,
        gt=0,
        description="Transcripts above this size are summarized from their tail",
    )
    large_file_tail_bytes: int = Field(LARGE_FILE_TAIL_BYTES, gt=0)

    # Monitoring
    log_level: str = Field("INFO", description="Logging level")
    log_file: str = Field("claude-island.log", description="Rotating log file")

    # Development
    debug: bool = Field(False, description="Enable debug mode")

    model_config = SettingsConfigDict(
        env_prefix="CLAUDE_ISLAND_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("socket_mode", mode="before")
    @classmethod
    def parse_socket_mode(cls, v: Any) -> int:
        """Accept octal strings such as ``"0600"`` or ``"0o600"``."""
        if isinstance(v, str):
            return int(v, 8)
        return v  # type: ignore[no-any-return]

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()  # type: ignore[no-any-return]

    @field_validator("claude_projects_dir")
    @classmethod
    def expand_projects_dir(cls, v: Path) -> Path:
        """Expand ``~`` in the transcripts root."""
        return v.expanduser()

    @model_validator(mode="after")
    def validate_cross_field_dependencies(self) -> "Settings":
        """Validate dependencies between fields."""
        if not 0 <= self.socket_mode <= 0o777:
            raise ValueError("socket_mode must be a permission mode between 0 and 0o777")

        if self.retry_base_delay > self.retry_max_delay:
            raise ValueError("retry_base_delay must not exceed retry_max_delay")

        if self.read_poll_seconds > self.read_budget_seconds:
            raise ValueError("read_poll_seconds must not exceed read_budget_seconds")

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug
