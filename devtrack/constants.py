"""Constants used across devtrack.

Internal limits and identifiers that are not user-configurable.
"""

# Header ticker
HEADER_EVENT_QUEUE_MAX = 10
HEADER_EVENT_DEFAULT_SECONDS = 5.0

# Notifications
NOTIFICATION_DEFAULT_SECONDS = 5

# Logs view
LOG_LINES_MAX = 1000

# Terminal geometry
TERMINAL_MIN_COLS = 10
TERMINAL_MIN_ROWS = 5
TERMINAL_DEFAULT_COLS = 80
TERMINAL_DEFAULT_ROWS = 24

# Double escape window for leaving terminal-input mode
DOUBLE_ESCAPE_WINDOW_S = 0.3
PENDING_ESCAPE_FLUSH_S = 0.35

# tmux host session prefixes
HOST_PREFIX_ROOT = "cdt-"
HOST_PREFIX_ASSISTANT = "cdt-cc-"
HOST_PREFIX_DATABASE = "cdt-db-"
HOST_PREFIX_SHELL = "cdt-sh-"

# Environment forced onto every hosted program so colours survive capture-pane -e
HOST_COLOR_ENV: dict[str, str] = {
    "TERM": "xterm-256color",
    "COLORTERM": "truecolor",
    "FORCE_COLOR": "1",
    "CLICOLOR_FORCE": "1",
}

# Self process entry in the processes view
SELF_PROCESS_ID = "self"
SELF_PROJECT_ID = "devtrack"
