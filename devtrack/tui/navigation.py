"""UI navigation state: what is selected, scrolled and open, per panel.

This is the state the reattach snapshot captures. It never holds view-model
content; item counts are re-derived from SharedState on demand.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path

from devtrack.core.state import SharedState
from devtrack.core.viewmodels import (
    ConfigVM,
    DashboardVM,
    GitVM,
    LogsVM,
    ProcessesVM,
    ProjectsVM,
    SessionListVM,
    ViewKind,
)
from devtrack.logging_config import get_logger

logger = get_logger(__name__)

CONFIG_MODES = ("projects", "browser", "settings")


class FocusArea(IntEnum):
    SIDEBAR = 0
    MAIN = 1
    DETAIL = 2


@dataclass(frozen=True)
class BrowserEntry:
    """Directory row in the config view's add-project browser."""

    name: str
    path: str
    is_dir: bool = True


def list_directories(path: str) -> list[BrowserEntry]:
    """Visible subdirectories of ``path``, with a ``..`` entry first unless at the root.

    An unreadable directory still yields the ``..`` entry so the user can back out.
    """
    entries: list[BrowserEntry] = []
    parent = os.path.dirname(path.rstrip("/")) or "/"
    if path != "/":
        entries.append(BrowserEntry(name="..", path=parent))
    try:
        children = sorted(os.scandir(path), key=lambda e: e.name.lower())
    except OSError as e:
        logger.debug("Cannot list %s: %s", path, e)
        return entries
    for child in children:
        if child.name.startswith("."):
            continue
        try:
            if not child.is_dir():
                continue
        except OSError:
            continue
        entries.append(BrowserEntry(name=child.name, path=child.path))
    return entries


@dataclass
class NavigationState:
    current_view: ViewKind = ViewKind.DASHBOARD
    focus_area: FocusArea = FocusArea.SIDEBAR
    sidebar_index: int = 0
    main_index: int = 0
    detail_index: int = 0
    main_scroll_offset: int = 0
    detail_scroll_offset: int = 0

    # config view
    config_mode: str = "projects"
    browser_path: str = field(default_factory=lambda: str(Path.home()))
    browser_entries: list[BrowserEntry] = field(default_factory=list)

    # logs view
    log_level_filter: str = ""
    log_source_filter: str = ""
    log_type_filter: str = ""
    log_search_text: str = ""
    log_scroll_offset: int = 0
    log_auto_scroll: bool = True

    git_show_diff: bool = False
    build_profile: str = "dev"

    # modal / transient interaction state, never restored
    show_dialog: bool = False
    show_help: bool = False
    filter_active: bool = False
    log_search_active: bool = False

    max_main_items: int = 0
    max_detail_items: int = 0

    def reset_modals(self) -> None:
        self.show_dialog = False
        self.show_help = False
        self.filter_active = False
        self.log_search_active = False

    def load_browser_entries(self) -> None:
        self.browser_entries = list_directories(self.browser_path)

    def update_item_counts(self, state: SharedState) -> None:
        """Recompute list lengths for the current view from the live view-models."""
        vm = state.get_view_model(self.current_view)
        main = 0
        detail = 0
        if isinstance(vm, ProjectsVM):
            # one row per component; a project without components still takes a row
            main = sum(max(1, len(p.components)) for p in vm.projects)
        elif isinstance(vm, ProcessesVM):
            main = len(vm.processes)
        elif isinstance(vm, GitVM):
            main = len(vm.projects)
            if self.focus_area is FocusArea.DETAIL and 0 <= self.main_index < len(vm.projects):
                git = vm.projects[self.main_index]
                detail = len(git.staged) + len(git.modified) + len(git.untracked) + len(git.deleted)
        elif isinstance(vm, DashboardVM):
            main = len(vm.projects)
        elif isinstance(vm, LogsVM):
            main = len(vm.lines)
        elif isinstance(vm, ConfigVM):
            main = len(self.browser_entries) if self.config_mode == "browser" else len(vm.projects)
        elif isinstance(vm, SessionListVM):
            main = len(vm.sessions)
        else:
            main = len(getattr(vm, "projects", []))
        self.max_main_items = main
        self.max_detail_items = detail
