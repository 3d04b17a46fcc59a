"""tmux client for answering Claude prompts from outside the terminal."""

import asyncio

from typing import List, Optional

import structlog

from ..exceptions import (
    CommandFailedError,
    CommandNotFoundError,
    ProcessExecutorError,
    TmuxCommandError,
    TmuxError,
    TmuxTargetNotFoundError,
)
from ..process.executor import run_command
from ..process.tree import TreeLike, ancestors


logger = structlog.get_logger()

# Pause between rejecting and typing the follow-up message
REJECT_MESSAGE_DELAY = 0.1


async def _run_tmux(args: List[str], tmux_path: str = "tmux") -> str:
    """Execute tmux command and return output.

    Raises:
        TmuxTargetNotFoundError: If the target pane does not exist
        TmuxCommandError: If tmux is missing or the command fails
    """
    try:
        return await run_command(tmux_path, args)
    except CommandNotFoundError as e:
        raise TmuxCommandError("tmux command not found. Is tmux installed?") from e
    except CommandFailedError as e:
        if "can't find" in e.stderr.lower():
            raise TmuxTargetNotFoundError(f"tmux target not found: {e.stderr}") from e
        raise TmuxCommandError(f"tmux command failed: {e.stderr}") from e
    except ProcessExecutorError as e:
        raise TmuxCommandError(f"Failed to execute tmux command: {e}") from e


async def find_tmux_target(
    pid: int, tree: TreeLike, tmux_path: str = "tmux"
) -> Optional[str]:
    """Pane target ("session:window.pane") whose shell is an ancestor of ``pid``."""
    output = await _run_tmux(
        [
            "list-panes",
            "-a",
            "-F",
            "#{session_name}:#{window_index}.#{pane_index} #{pane_pid}",
        ],
        tmux_path,
    )

    lineage = set(ancestors(pid, tree))
    for line in output.splitlines():
        parts = line.rsplit(" ", 1)
        if len(parts) != 2:
            continue
        target, pane_pid = parts
        try:
            if int(pane_pid) in lineage:
                return target
        except ValueError:
            continue
    return None


class TmuxClient:
    """Send keystrokes to the pane running a Claude session."""

    def __init__(self, pane_target: str, tmux_path: str = "tmux"):
        """Initialize tmux client.

        Args:
            pane_target: tmux pane target in format "session:window.pane"
            tmux_path: tmux executable
        """
        self.pane_target = pane_target
        self.tmux_path = tmux_path

    async def approve_once(self) -> bool:
        """Pick "Yes" in the permission prompt."""
        return await self.send_keys("1")

    async def approve_always(self) -> bool:
        """Pick "Yes, and don't ask again"."""
        return await self.send_keys("2")

    async def reject(self, message: Optional[str] = None) -> bool:
        """Decline the tool, optionally telling Claude what to do instead."""
        if not await self.send_keys("n"):
            return False

        if message:
            await asyncio.sleep(REJECT_MESSAGE_DELAY)
            return await self.send_keys(message)

        return True

    async def send_message(self, message: str) -> bool:
        return await self.send_keys(message)

    async def send_keys(self, keys: str, press_enter: bool = True) -> bool:
        """Type ``keys`` literally, then Enter as a separate key press.

        Returns:
            True if tmux accepted every command
        """
        try:
            await _run_tmux(
                ["send-keys", "-t", self.pane_target, "-l", keys], self.tmux_path
            )
            if press_enter:
                await _run_tmux(
                    ["send-keys", "-t", self.pane_target, "Enter"], self.tmux_path
                )
            return True
        except TmuxError as e:
            logger.error(
                "Failed to send keys to tmux pane",
                pane_target=self.pane_target,
                error=str(e),
            )
            return False

    async def is_pane_active(self) -> bool:
        """Check if pane exists and is accessible."""
        try:
            await _run_tmux(
                ["display-message", "-t", self.pane_target, "-p", "#{pane_id}"],
                self.tmux_path,
            )
            return True
        except TmuxError:
            return False
