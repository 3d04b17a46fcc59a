"""Custom exceptions for Claude Island."""


class ClaudeIslandError(Exception):
    """Base exception for Claude Island."""

    pass


class ConfigurationError(ClaudeIslandError):
    """Configuration-related errors."""

    pass


class SocketServerError(ClaudeIslandError):
    """Hook socket server errors."""

    pass


class SocketBindError(SocketServerError):
    """Binding or listening on the hook socket failed."""

    pass


class ProcessExecutorError(ClaudeIslandError):
    """Running an external command failed."""

    pass


class CommandNotFoundError(ProcessExecutorError):
    """The executable could not be found."""

    pass


class CommandFailedError(ProcessExecutorError):
    """The command exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = f", stderr: {stderr}" if stderr else ""
        super().__init__(f"Command '{command}' failed with exit code {exit_code}{detail}")


class TmuxError(ClaudeIslandError):
    """Base tmux integration error."""

    pass


class TmuxCommandError(TmuxError):
    """Error executing tmux command."""

    pass


class TmuxTargetNotFoundError(TmuxError):
    """No tmux pane owns the session process."""

    pass


class TranscriptError(ClaudeIslandError):
    """Transcript file could not be read."""

    pass
