"""Small shared helpers."""

from __future__ import annotations

import json
import os
import re
from datetime import timedelta
from pathlib import Path


def expand_env_vars(config: object) -> object:
    """Recursively expand ${VAR} patterns in a loaded config tree.

    Unknown variables are left untouched so validation can report them.
    """
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}  # type: ignore[misc]
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, config)
    return config


def short_id(value: str, length: int = 8) -> str:
    """Leading characters of an opaque id, for logs and host names."""
    return value[:length]


def format_duration(delta: timedelta) -> str:
    """Render an uptime/duration like ``1h02m03s`` (seconds resolution)."""
    total = max(0, int(delta.total_seconds()))
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


def atomic_write_json(path: Path, data: object) -> None:
    """Write JSON to ``path`` via a fsynced temp file and os.replace.

    Raises OSError; callers decide whether a failed write is fatal.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)
