"""Claude Island.

A local daemon that watches Claude Code sessions through their hooks and
transcripts, and brokers tool permission requests between the hook processes
and the person at the keyboard.
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Development status indicators
__status__ = "Alpha"
