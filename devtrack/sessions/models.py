"""Session records and launch specs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from devtrack.constants import HOST_PREFIX_ASSISTANT, HOST_PREFIX_DATABASE, HOST_PREFIX_SHELL
from devtrack.utils import short_id


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionKind(str, Enum):
    ASSISTANT = "assistant"
    DATABASE = "database"
    SHELL = "shell"

    @property
    def host_prefix(self) -> str:
        return _HOST_PREFIXES[self]


_HOST_PREFIXES = {
    SessionKind.ASSISTANT: HOST_PREFIX_ASSISTANT,
    SessionKind.DATABASE: HOST_PREFIX_DATABASE,
    SessionKind.SHELL: HOST_PREFIX_SHELL,
}


class SessionState(str, Enum):
    """Lifecycle shared by a Session and its Terminal.

    CREATED is the terminal's idle state: constructed, never started.
    """

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERRORED = "errored"


def new_session_id() -> str:
    return uuid.uuid4().hex


def host_name_for(kind: SessionKind, session_id: str) -> str:
    return f"{kind.host_prefix}{short_id(session_id)}"


@dataclass(frozen=True)
class LaunchSpec:
    """What to run for a session; arguments are passed through uninterpreted."""

    session_id: str
    work_dir: str
    executable: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "work_dir": self.work_dir,
            "executable": self.executable,
            "args": list(self.args),
            "env": dict(self.env),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LaunchSpec":
        return cls(
            session_id=str(data["session_id"]),
            work_dir=str(data.get("work_dir", "")),
            executable=str(data["executable"]),
            args=tuple(str(a) for a in data.get("args", [])),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        )


@dataclass
class Session:
    id: str
    kind: SessionKind
    project_id: str
    work_dir: str
    launch: LaunchSpec
    project_name: str = ""
    name: str = ""
    custom_name: str = ""
    state: SessionState = SessionState.CREATED
    last_error: str = ""
    created_at: datetime = field(default_factory=_now)
    last_active_at: datetime = field(default_factory=_now)

    @property
    def display_name(self) -> str:
        return self.custom_name or self.name or f"{self.kind.value}-{short_id(self.id)}"

    @property
    def host_name(self) -> str:
        return host_name_for(self.kind, self.id)

    def touch(self) -> None:
        self.last_active_at = _now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "work_dir": self.work_dir,
            "launch": self.launch.to_dict(),
            "name": self.name,
            "custom_name": self.custom_name,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "last_active_at": self.last_active_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Rebuild a catalogued session.

        Live states are not trusted across restarts: a session that was
        starting or running comes back as STOPPED until it is re-attached.
        """
        state = SessionState(data.get("state", SessionState.STOPPED.value))
        if state in (SessionState.STARTING, SessionState.RUNNING):
            state = SessionState.STOPPED
        return cls(
            id=str(data["id"]),
            kind=SessionKind(data["kind"]),
            project_id=str(data.get("project_id", "")),
            project_name=str(data.get("project_name", "")),
            work_dir=str(data.get("work_dir", "")),
            launch=LaunchSpec.from_dict(data["launch"]),
            name=str(data.get("name", "")),
            custom_name=str(data.get("custom_name", "")),
            state=state,
            created_at=_parse_time(data.get("created_at")),
            last_active_at=_parse_time(data.get("last_active_at")),
        )


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return _now()
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
