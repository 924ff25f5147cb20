"""Persistence for the reattach snapshot (``<state_dir>/reattach.json``)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from devtrack.logging_config import get_logger
from devtrack.paths import REATTACH_STATE_FILENAME
from devtrack.tui.reattach import ReattachSnapshot
from devtrack.utils import atomic_write_json

logger = get_logger(__name__)


class SnapshotStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def in_state_dir(cls, state_dir: Path) -> "SnapshotStore":
        return cls(state_dir / REATTACH_STATE_FILENAME)

    def load(self) -> Optional[ReattachSnapshot]:
        """The saved snapshot, or None when there is none or it cannot be read."""
        if not self.path.exists():
            logger.debug("No reattach snapshot at %s", self.path)
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load reattach snapshot from %s: %s", self.path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed reattach snapshot at %s", self.path)
            return None
        return ReattachSnapshot.from_dict(data)

    def save(self, snapshot: ReattachSnapshot) -> bool:
        try:
            atomic_write_json(self.path, snapshot.to_dict())
        except OSError as e:
            logger.error("Failed to save reattach snapshot to %s: %s", self.path, e)
            return False
        logger.debug("Saved reattach snapshot (view=%s) to %s", snapshot.current_view, self.path)
        return True

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove reattach snapshot %s: %s", self.path, e)
