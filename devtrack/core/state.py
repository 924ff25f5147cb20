"""SharedState: the single guarded store of view-models and transient UI feedback.

Every read and write goes through a readers-writer lock. Writers replace whole
objects (view-models, the header queue list) so a reader that grabbed a
reference before a write keeps seeing a complete, consistent value.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from devtrack.constants import HEADER_EVENT_QUEUE_MAX
from devtrack.core.errors import UnknownViewKind
from devtrack.core.events import HeaderEvent, Notification
from devtrack.core.rwlock import ReadWriteLock
from devtrack.core.viewmodels import (
    VIEW_MODEL_TYPES,
    ProcessVM,
    ProcessesVM,
    ProjectsVM,
    ProjectVM,
    ViewKind,
    ViewModel,
    parse_view_kind,
)

VM = TypeVar("VM", bound=ViewModel)

NOTIFICATIONS_MAX = 50
VIEW_HISTORY_MAX = 20


@dataclass(frozen=True)
class StateFlags:
    is_connected: bool = True
    initializing: bool = True
    git_loading: bool = False
    last_refresh: Optional[datetime] = None


def resolve_view_kind(kind: object) -> ViewKind:
    try:
        return parse_view_kind(kind)
    except ValueError as e:
        raise UnknownViewKind(kind) from e


class SharedState:
    def __init__(self, current_view: ViewKind = ViewKind.DASHBOARD) -> None:
        self._lock = ReadWriteLock()
        self._view_models: dict[ViewKind, ViewModel] = {kind: cls() for kind, cls in VIEW_MODEL_TYPES.items()}
        self._current_view = current_view
        self._view_history: list[ViewKind] = []
        self._header_events: list[HeaderEvent] = []
        self._notifications: list[Notification] = []
        self._flags = StateFlags()

    # --- View-models ---

    def update_view_model(self, vm: ViewModel) -> None:
        """Replace the cached entry for ``vm.kind``."""
        kind = getattr(type(vm), "kind", None)
        if not isinstance(kind, ViewKind):
            raise UnknownViewKind(type(vm).__name__)
        with self._lock.write():
            self._view_models[kind] = vm

    def get_view_model(self, kind: ViewKind | str) -> ViewModel:
        view = resolve_view_kind(kind)
        with self._lock.read():
            return self._view_models[view]

    def typed_view_model(self, cls: type[VM]) -> VM:
        """Return the cached entry for ``cls.kind``, checked against ``cls``."""
        vm = self.get_view_model(cls.kind)
        if not isinstance(vm, cls):
            raise TypeError(f"{cls.kind.value} holds {type(vm).__name__}, expected {cls.__name__}")
        return vm

    def mutate_view_model(self, kind: ViewKind | str, fn: Callable[[VM], None]) -> VM:
        """Apply ``fn`` to a copy of the cached entry and swap the copy in.

        Readers see either the old or the new instance, never a partial edit.
        """
        view = resolve_view_kind(kind)
        with self._lock.write():
            updated = copy.deepcopy(self._view_models[view])
            fn(updated)  # type: ignore[arg-type]
            updated.touch()
            self._view_models[view] = updated
        return updated  # type: ignore[return-value]

    def get_current_view_model(self) -> ViewModel:
        with self._lock.read():
            return self._view_models[self._current_view]

    @property
    def current_view(self) -> ViewKind:
        with self._lock.read():
            return self._current_view

    def set_current_view(self, kind: ViewKind | str) -> ViewKind:
        view = resolve_view_kind(kind)
        with self._lock.write():
            if view != self._current_view:
                self._view_history.append(self._current_view)
                del self._view_history[:-VIEW_HISTORY_MAX]
                self._current_view = view
        return view

    def go_back(self) -> Optional[ViewKind]:
        """Return to the previously shown view, or None when there is no history."""
        with self._lock.write():
            if not self._view_history:
                return None
            self._current_view = self._view_history.pop()
            return self._current_view

    # --- Header events ---

    def set_header_event(self, event: HeaderEvent) -> None:
        """Push a header event.

        Persistent entries are dropped first. A message equal to the newest
        entry only refreshes that entry's timestamp; older duplicates are not
        considered. The queue keeps the most recent HEADER_EVENT_QUEUE_MAX.
        """
        with self._lock.write():
            events = [e for e in self._header_events if not e.persistent]
            if events and events[-1].message == event.message:
                events[-1] = replace(events[-1], created_at=event.created_at)
            else:
                events.append(event)
                del events[:-HEADER_EVENT_QUEUE_MAX]
            self._header_events = events

    def get_header_event(self, now: Optional[datetime] = None) -> Optional[HeaderEvent]:
        """Oldest entry that has not expired yet."""
        now = now or datetime.now(timezone.utc)
        with self._lock.read():
            for event in self._header_events:
                if not event.is_expired(now):
                    return event
        return None

    def get_header_events(self) -> list[HeaderEvent]:
        with self._lock.read():
            return list(self._header_events)

    def clear_expired_header_events(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock.write():
            kept = [e for e in self._header_events if not e.is_expired(now)]
            removed = len(self._header_events) - len(kept)
            if removed:
                self._header_events = kept
        return removed

    def clear_header_events(self) -> None:
        with self._lock.write():
            self._header_events = []

    # --- Notifications ---

    def add_notification(self, notification: Notification) -> Notification:
        if not notification.id:
            notification = replace(notification, id=uuid.uuid4().hex[:12])
        with self._lock.write():
            notifications = self._notifications + [notification]
            del notifications[:-NOTIFICATIONS_MAX]
            self._notifications = notifications
        return notification

    def remove_notification(self, index: int) -> None:
        with self._lock.write():
            if 0 <= index < len(self._notifications):
                notifications = list(self._notifications)
                del notifications[index]
                self._notifications = notifications

    def clear_notifications(self) -> None:
        with self._lock.write():
            self._notifications = []

    def notifications(self) -> list[Notification]:
        with self._lock.read():
            return list(self._notifications)

    # --- Flags ---

    def set_flags(self, **flags: object) -> StateFlags:
        with self._lock.write():
            self._flags = replace(self._flags, **flags)  # type: ignore[arg-type]
            return self._flags

    def flags(self) -> StateFlags:
        with self._lock.read():
            return self._flags

    # --- Selectors ---

    def select_projects(self) -> list[ProjectVM]:
        vm = self.typed_view_model(ProjectsVM)
        return list(vm.projects)

    def select_project_by_id(self, project_id: str) -> Optional[ProjectVM]:
        for project in self.select_projects():
            if project.id == project_id:
                return project
        return None

    def select_running_processes(self) -> list[ProcessVM]:
        vm = self.typed_view_model(ProcessesVM)
        return [p for p in vm.processes if p.state == "running"]
