"""Point-in-time process tree built from ``ps`` output."""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Union

import structlog

from ..utils.constants import MAX_ANCESTOR_DEPTH, MAX_DESCENDANT_CHECK_DEPTH
from .executor import run_command_or_none


logger = structlog.get_logger()

# ps prints these for processes without a controlling terminal
_NO_TTY = {"??", "?", "-"}

# Lowercase substrings identifying terminal emulator processes
TERMINAL_APP_NAMES = (
    "terminal",
    "iterm",
    "warp",
    "alacritty",
    "kitty",
    "wezterm",
    "ghostty",
    "hyper",
    "konsole",
    "xterm",
    "tilix",
    "terminator",
    "foot",
)


def is_terminal(command: str) -> bool:
    name = command.lower()
    return any(app in name for app in TERMINAL_APP_NAMES)


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    ppid: int
    command: str
    tty: Optional[str] = None


@dataclass(frozen=True)
class ProcessTree:
    """Processes by pid plus a parent → children index."""

    info_by_pid: Dict[int, ProcessInfo]
    children_by_pid: Dict[int, List[int]] = field(default_factory=dict)

    @classmethod
    def from_info(cls, info: Mapping[int, ProcessInfo]) -> "ProcessTree":
        children: Dict[int, List[int]] = {}
        for pid, process in info.items():
            children.setdefault(process.ppid, []).append(pid)
        return cls(info_by_pid=dict(info), children_by_pid=children)

    def get(self, pid: int) -> Optional[ProcessInfo]:
        return self.info_by_pid.get(pid)

    def __len__(self) -> int:
        return len(self.info_by_pid)


TreeLike = Union[ProcessTree, Mapping[int, ProcessInfo]]


def _info_map(tree: TreeLike) -> Mapping[int, ProcessInfo]:
    return tree.info_by_pid if isinstance(tree, ProcessTree) else tree


def parse_ps_output(output: str) -> Dict[int, ProcessInfo]:
    """Parse ``ps -eo pid,ppid,tty,comm``; the header and junk lines are skipped."""
    processes: Dict[int, ProcessInfo] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 4:
            continue
        try:
            pid = int(parts[0])
            ppid = int(parts[1])
        except ValueError:
            continue
        tty = None if parts[2] in _NO_TTY else parts[2]
        processes[pid] = ProcessInfo(pid=pid, ppid=ppid, command=" ".join(parts[3:]), tty=tty)
    return processes


def parse_lsof_cwd(output: str) -> Optional[str]:
    """Working directory from ``lsof -p PID -Fn`` field output."""
    found_cwd = False
    for line in output.splitlines():
        if line == "fcwd":
            found_cwd = True
        elif found_cwd and line.startswith("n"):
            return line[1:]
    return None


def is_in_tmux(pid: int, tree: TreeLike) -> bool:
    """Whether any ancestor (or the process itself) is tmux."""
    info = _info_map(tree)
    current, depth = pid, 0
    while current > 1 and depth < MAX_ANCESTOR_DEPTH:
        process = info.get(current)
        if process is None:
            break
        if "tmux" in process.command.lower():
            return True
        current = process.ppid
        depth += 1
    return False


def find_terminal_pid(pid: int, tree: TreeLike) -> Optional[int]:
    """Closest ancestor that is a terminal emulator."""
    info = _info_map(tree)
    current, depth = pid, 0
    while current > 1 and depth < MAX_ANCESTOR_DEPTH:
        process = info.get(current)
        if process is None:
            break
        if is_terminal(process.command):
            return current
        current = process.ppid
        depth += 1
    return None


def ancestors(pid: int, tree: TreeLike) -> List[int]:
    """The process and its ancestors, nearest first."""
    info = _info_map(tree)
    chain = []
    current, depth = pid, 0
    while current > 1 and depth < MAX_ANCESTOR_DEPTH:
        chain.append(current)
        process = info.get(current)
        if process is None:
            break
        current = process.ppid
        depth += 1
    return chain


def is_descendant(target_pid: int, ancestor_pid: int, tree: TreeLike) -> bool:
    info = _info_map(tree)
    current, depth = target_pid, 0
    while current > 1 and depth < MAX_DESCENDANT_CHECK_DEPTH:
        if current == ancestor_pid:
            return True
        process = info.get(current)
        if process is None:
            break
        current = process.ppid
        depth += 1
    return False


def find_descendants(pid: int, tree: TreeLike) -> Set[int]:
    """All descendants, breadth first.

    An indexed ``ProcessTree`` looks children up directly; a plain mapping is
    scanned for each visited process.
    """
    descendants: Set[int] = set()
    queue = deque([pid])

    if isinstance(tree, ProcessTree):
        while queue:
            current = queue.popleft()
            for child in tree.children_by_pid.get(current, ()):
                if child not in descendants:
                    descendants.add(child)
                    queue.append(child)
        return descendants

    while queue:
        current = queue.popleft()
        for child, process in tree.items():
            if process.ppid == current and child not in descendants:
                descendants.add(child)
                queue.append(child)
    return descendants


class ProcessTreeBuilder:
    """Snapshot the system process table."""

    def __init__(self, ps_path: str = "ps", lsof_path: str = "lsof"):
        self.ps_path = ps_path
        self.lsof_path = lsof_path

    async def build_tree(self) -> Dict[int, ProcessInfo]:
        output = await run_command_or_none(self.ps_path, ["-eo", "pid,ppid,tty,comm"])
        if output is None:
            logger.warning("Could not list processes")
            return {}
        return parse_ps_output(output)

    async def build_indexed_tree(self) -> ProcessTree:
        return ProcessTree.from_info(await self.build_tree())

    async def get_working_directory(self, pid: int) -> Optional[str]:
        output = await run_command_or_none(self.lsof_path, ["-p", str(pid), "-Fn"])
        if output is None:
            return None
        return parse_lsof_cwd(output)
