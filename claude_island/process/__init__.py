"""Process listing and command execution."""

from .executor import run_command, run_command_or_none
from .tree import ProcessInfo, ProcessTree, ProcessTreeBuilder

__all__ = [
    "ProcessInfo",
    "ProcessTree",
    "ProcessTreeBuilder",
    "run_command",
    "run_command_or_none",
]
