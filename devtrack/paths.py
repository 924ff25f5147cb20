from __future__ import annotations

import os
from pathlib import Path

DEFAULT_STATE_DIR = (Path("~/.devtrack")).expanduser()
DEFAULT_CONFIG_PATH = DEFAULT_STATE_DIR / "devtrack.yml"
DEFAULT_LOG_PATH = DEFAULT_STATE_DIR / "logs" / "devtrack.log"

REATTACH_STATE_FILENAME = "reattach.json"
SESSION_CATALOG_FILENAME = "sessions.json"


def resolve_config_path() -> Path:
    """Config file location, honouring DEVTRACK_CONFIG."""
    override = os.getenv("DEVTRACK_CONFIG")
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_PATH
