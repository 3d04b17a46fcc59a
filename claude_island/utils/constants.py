"""Application-wide constants."""

# Version info
APP_NAME = "Claude Island"
APP_DESCRIPTION = "Session monitor and permission broker for Claude Code"

# Hook socket
DEFAULT_SOCKET_PATH = "/tmp/claude-island.sock"
DEFAULT_SOCKET_MODE = 0o600
SOCKET_LISTEN_BACKLOG = 10
READ_CHUNK_SIZE = 131_072  # 128KB per read
DEFAULT_READ_BUDGET_SECONDS = 0.5
DEFAULT_READ_POLL_SECONDS = 0.05

# Permission requests
DEFAULT_PERMISSION_TIMEOUT_SECONDS = 300
DEFAULT_MAX_RESPONDED_PERMISSIONS = 100

# Bind retry backoff
DEFAULT_RETRY_BASE_DELAY = 0.5
DEFAULT_RETRY_MAX_DELAY = 10.0
DEFAULT_RETRY_MAX_ATTEMPTS = 5
RETRY_JITTER_FRACTION = 0.3

# Transcripts
CLAUDE_PROJECTS_DIR = "~/.claude/projects"
MAX_FULL_LOAD_FILE_SIZE = 10_000_000  # 10MB
LARGE_FILE_TAIL_BYTES = 2_000_000  # 2MB
CLEAR_COMMAND_MARKER = "<command-name>/clear</command-name>"
INTERRUPT_MARKER = "[Request interrupted by user"

# Process tree
MAX_ANCESTOR_DEPTH = 20
MAX_DESCENDANT_CHECK_DEPTH = 50
