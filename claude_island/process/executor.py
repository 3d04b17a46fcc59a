"""Run external commands whose text output the monitor parses."""

import asyncio

from typing import List, Optional, Sequence

import structlog

from ..exceptions import CommandFailedError, CommandNotFoundError, ProcessExecutorError


logger = structlog.get_logger()

DEFAULT_COMMAND_TIMEOUT = 10.0


async def run_command(
    executable: str, args: Sequence[str] = (), timeout: float = DEFAULT_COMMAND_TIMEOUT
) -> str:
    """Execute a command and return its stdout.

    Args:
        executable: Program name or path
        args: Command arguments
        timeout: Seconds before the process is killed

    Returns:
        Decoded standard output

    Raises:
        CommandNotFoundError: If the executable does not exist
        CommandFailedError: If the command exits with a non-zero status
        ProcessExecutorError: If the command could not be run or timed out
    """
    cmd: List[str] = [executable, *args]
    command = " ".join(cmd)

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError as e:
        raise CommandNotFoundError(f"{executable} command not found") from e
    except OSError as e:
        raise ProcessExecutorError(f"Failed to launch {command}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise ProcessExecutorError(f"{command} timed out after {timeout}s") from e

    if proc.returncode != 0:
        raise CommandFailedError(
            command, proc.returncode, stderr.decode(errors="replace").strip()
        )

    return stdout.decode(errors="replace")


async def run_command_or_none(
    executable: str, args: Sequence[str] = (), timeout: float = DEFAULT_COMMAND_TIMEOUT
) -> Optional[str]:
    """Like ``run_command`` but logs failures and returns None."""
    try:
        return await run_command(executable, args, timeout)
    except ProcessExecutorError as e:
        logger.debug("Command failed", executable=executable, error=str(e))
        return None
