"""Simple configuration loading."""

from typing import Any

import structlog

from claude_island.exceptions import ConfigurationError

from .settings import Settings


logger = structlog.get_logger()


def load_config(**overrides: Any) -> Settings:
    """Load configuration from environment variables.

    Args:
        **overrides: Explicit values (e.g. from CLI flags) taking precedence
            over the environment

    Returns:
        Configured Settings instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    logger.info("Loading configuration from environment")

    try:
        settings = Settings(
            **{key: value for key, value in overrides.items() if value is not None}
        )

        logger.info(
            "Configuration loaded successfully",
            debug=settings.debug,
            socket_path=settings.socket_path,
        )

        return settings

    except Exception as e:
        logger.error("Failed to load configuration", error=str(e))
        raise ConfigurationError(f"Configuration loading failed: {e}") from e
