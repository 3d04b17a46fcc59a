"""Locate Claude Code transcript files on disk."""

from pathlib import Path
from typing import Optional, Union

from ..utils.constants import CLAUDE_PROJECTS_DIR


def default_projects_dir() -> Path:
    return Path(CLAUDE_PROJECTS_DIR).expanduser()


def project_dir_name(cwd: str) -> str:
    """Claude's folder name for a working directory: ``/`` and ``.`` become ``-``."""
    return cwd.replace("/", "-").replace(".", "-")


def project_dir(cwd: str, projects_dir: Optional[Union[str, Path]] = None) -> Path:
    root = Path(projects_dir) if projects_dir else default_projects_dir()
    return root / project_dir_name(cwd)


def session_file_path(
    session_id: str, cwd: str, projects_dir: Optional[Union[str, Path]] = None
) -> Path:
    """``<projects>/<sanitized cwd>/<session_id>.jsonl``"""
    return project_dir(cwd, projects_dir) / f"{session_id}.jsonl"


def agent_file_path(
    agent_id: str, cwd: str, projects_dir: Optional[Union[str, Path]] = None
) -> Path:
    """Sub-agent transcript written next to the parent session file."""
    return project_dir(cwd, projects_dir) / f"agent-{agent_id}.jsonl"
