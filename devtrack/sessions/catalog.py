"""Persistence of session records (including custom names) across UI restarts."""

from __future__ import annotations

import json
from pathlib import Path

from devtrack.logging_config import get_logger
from devtrack.sessions.models import Session
from devtrack.utils import atomic_write_json

logger = get_logger(__name__)

CATALOG_VERSION = 1


class SessionCatalog:
    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> dict[str, Session]:
        if not self.path.exists():
            logger.debug("No session catalog at %s", self.path)
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load session catalog from %s: %s", self.path, e)
            return {}

        sessions: dict[str, Session] = {}
        for item in data.get("sessions", []) if isinstance(data, dict) else []:
            try:
                session = Session.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed session record in %s: %s", self.path, e)
                continue
            sessions[session.id] = session
        logger.info("Loaded %d sessions from %s", len(sessions), self.path)
        return sessions

    def save(self, sessions: list[Session]) -> None:
        payload = {
            "version": CATALOG_VERSION,
            "sessions": [s.to_dict() for s in sessions],
        }
        try:
            atomic_write_json(self.path, payload)
        except OSError as e:
            logger.error("Failed to save session catalog to %s: %s", self.path, e)
            return
        logger.debug("Saved %d sessions to %s", len(sessions), self.path)
