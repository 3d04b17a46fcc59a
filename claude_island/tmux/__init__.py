"""tmux integration for answering Claude prompts in a pane."""

from .client import TmuxClient, find_tmux_target

__all__ = [
    "TmuxClient",
    "find_tmux_target",
]
