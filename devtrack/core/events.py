"""Intents, notifications, state updates and header events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from devtrack.constants import HEADER_EVENT_DEFAULT_SECONDS, NOTIFICATION_DEFAULT_SECONDS
from devtrack.core.viewmodels import ViewKind, ViewModel


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    """Intent kinds accepted by EventCoordinator.handle_event."""

    # Navigation
    NAVIGATE = "navigate"
    BACK = "back"
    REFRESH = "refresh"
    QUIT = "quit"

    # Projects
    SELECT_PROJECT = "select_project"
    ADD_PROJECT = "add_project"
    REMOVE_PROJECT = "remove_project"
    REFRESH_PROJECT = "refresh_project"

    # Builds
    START_BUILD = "start_build"
    BUILD_ALL = "build_all"
    CANCEL_BUILD = "cancel_build"

    # Processes
    START_PROCESS = "start_process"
    STOP_PROCESS = "stop_process"
    RESTART_PROCESS = "restart_process"
    KILL_PROCESS = "kill_process"
    PAUSE_PROCESS = "pause_process"

    # Git
    GIT_STATUS = "git_status"
    GIT_DIFF = "git_diff"
    GIT_LOG = "git_log"

    # Config
    SAVE_CONFIG = "save_config"
    RELOAD_CONFIG = "reload_config"

    # Embedded sessions; session kind travels in data["kind"]
    SESSION_CREATE = "session_create"
    SESSION_SELECT = "session_select"
    SESSION_START = "session_start"
    SESSION_STOP = "session_stop"
    SESSION_DELETE = "session_delete"
    SESSION_RENAME = "session_rename"

    # UI
    FILTER = "filter"
    SORT = "sort"
    TOGGLE = "toggle"
    SCROLL = "scroll"


@dataclass
class Event:
    """A user intent.

    ``type`` is normally an EventType; a raw string is accepted so that an
    unrecognized tag can reach the coordinator and be rejected there.
    """

    type: EventType | str
    target: str = ""
    project_id: str = ""
    component: str = ""
    value: Any = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def navigate(cls, view: ViewKind | str) -> "Event":
        return cls(type=EventType.NAVIGATE, value=view)

    @classmethod
    def refresh(cls) -> "Event":
        return cls(type=EventType.REFRESH)

    @classmethod
    def build(cls, project_id: str, component: str = "") -> "Event":
        return cls(type=EventType.START_BUILD, project_id=project_id, component=component)

    @classmethod
    def process(cls, kind: EventType, project_id: str, component: str) -> "Event":
        return cls(type=kind, project_id=project_id, component=component)

    @classmethod
    def filter(cls, text: str) -> "Event":
        return cls(type=EventType.FILTER, value=text)

    @classmethod
    def session(cls, kind: EventType, session_kind: str, **data: Any) -> "Event":
        payload = {"kind": session_kind}
        payload.update(data)
        return cls(type=kind, data=payload)


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    """User-facing message produced in response to an intent or lifecycle event."""

    type: NotificationType
    title: str
    message: str
    id: str = ""
    timestamp: datetime = field(default_factory=_now)
    duration: int = NOTIFICATION_DEFAULT_SECONDS
    dismissable: bool = True

    @classmethod
    def info(cls, title: str, message: str) -> "Notification":
        return cls(NotificationType.INFO, title, message)

    @classmethod
    def success(cls, title: str, message: str) -> "Notification":
        return cls(NotificationType.SUCCESS, title, message)

    @classmethod
    def warning(cls, title: str, message: str) -> "Notification":
        return cls(NotificationType.WARNING, title, message)

    @classmethod
    def error(cls, title: str, message: str) -> "Notification":
        return cls(NotificationType.ERROR, title, message)


@dataclass
class StateUpdate:
    """Broadcast unit: a refreshed view-model and/or a notification."""

    view: Optional[ViewKind] = None
    view_model: Optional[ViewModel] = None
    notification: Optional[Notification] = None
    partial: bool = False
    timestamp: datetime = field(default_factory=_now)


class HeaderEventLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    PROGRESS = "progress"


@dataclass
class HeaderEvent:
    """Transient status message shown in the header bar.

    Persistent events never expire on their own; they are dropped as soon as
    any new header event is pushed.
    """

    message: str
    level: HeaderEventLevel = HeaderEventLevel.INFO
    created_at: datetime = field(default_factory=_now)
    duration_s: float = HEADER_EVENT_DEFAULT_SECONDS
    persistent: bool = False

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.persistent:
            return None
        return self.created_at + timedelta(seconds=self.duration_s)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return (now or _now()) >= expires_at
