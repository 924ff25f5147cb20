"""Detach/reattach: export and restore the UI's navigation state.

A snapshot is a flat record of navigation fields plus the ids of the sessions
that were live. It carries no view-model content; that is re-derived after
restore. ``from_dict`` ignores unknown keys and keeps defaults for missing or
mistyped ones, so older and newer snapshots both load.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Mapping, Optional

from devtrack.core.state import SharedState
from devtrack.core.viewmodels import ViewKind, parse_view_kind
from devtrack.logging_config import get_logger
from devtrack.sessions.multiplexer import SessionMultiplexer
from devtrack.tui.navigation import FocusArea, NavigationState

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class ReattachSnapshot:
    current_view: str = ""
    focus_area: int = 0
    sidebar_index: int = 0
    main_index: int = 0
    detail_index: int = 0
    main_scroll_offset: int = 0
    detail_scroll_offset: int = 0
    config_mode: str = ""
    browser_path: str = ""
    log_level_filter: str = ""
    log_source_filter: str = ""
    log_type_filter: str = ""
    log_search_text: str = ""
    log_scroll_offset: int = 0
    log_auto_scroll: bool = True
    git_show_diff: bool = False
    build_profile: str = ""
    active_session_ids: list[str] = field(default_factory=list)
    foreground_session_id: str = ""
    version: int = SNAPSHOT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ReattachSnapshot":
        snapshot = cls()
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            default = getattr(snapshot, f.name)
            if isinstance(default, list):
                if isinstance(value, list):
                    setattr(snapshot, f.name, [str(item) for item in value if isinstance(item, str)])
            elif isinstance(default, bool):
                if isinstance(value, bool):
                    setattr(snapshot, f.name, value)
            elif isinstance(default, int):
                if isinstance(value, int) and not isinstance(value, bool):
                    setattr(snapshot, f.name, value)
            elif isinstance(value, str):
                setattr(snapshot, f.name, value)
        return snapshot


def export_snapshot(nav: NavigationState, multiplexer: Optional[SessionMultiplexer] = None) -> ReattachSnapshot:
    """Capture ``nav`` and the live session ids."""
    return ReattachSnapshot(
        current_view=nav.current_view.value,
        focus_area=int(nav.focus_area),
        sidebar_index=nav.sidebar_index,
        main_index=nav.main_index,
        detail_index=nav.detail_index,
        main_scroll_offset=nav.main_scroll_offset,
        detail_scroll_offset=nav.detail_scroll_offset,
        config_mode=nav.config_mode,
        browser_path=nav.browser_path,
        log_level_filter=nav.log_level_filter,
        log_source_filter=nav.log_source_filter,
        log_type_filter=nav.log_type_filter,
        log_search_text=nav.log_search_text,
        log_scroll_offset=nav.log_scroll_offset,
        log_auto_scroll=nav.log_auto_scroll,
        git_show_diff=nav.git_show_diff,
        build_profile=nav.build_profile,
        active_session_ids=multiplexer.running_session_ids() if multiplexer else [],
        foreground_session_id=(multiplexer.foreground_id or "") if multiplexer else "",
    )


def import_snapshot(
    nav: NavigationState,
    snapshot: ReattachSnapshot,
    state: SharedState,
    on_restore: Optional[Callable[[ReattachSnapshot], None]] = None,
) -> None:
    """Restore ``snapshot`` into a freshly built ``nav``.

    Modal state is always reset, never restored. Empty strings keep the
    default for the view, browser path, config mode and build profile.
    """
    nav.reset_modals()

    if snapshot.current_view:
        try:
            nav.current_view = parse_view_kind(snapshot.current_view)
        except ValueError:
            logger.warning("Ignoring unknown view %r in reattach snapshot", snapshot.current_view)
    try:
        nav.focus_area = FocusArea(snapshot.focus_area)
    except ValueError:
        nav.focus_area = FocusArea.SIDEBAR
    nav.sidebar_index = snapshot.sidebar_index
    nav.main_index = snapshot.main_index
    nav.detail_index = snapshot.detail_index
    nav.main_scroll_offset = snapshot.main_scroll_offset
    nav.detail_scroll_offset = snapshot.detail_scroll_offset

    if snapshot.config_mode:
        nav.config_mode = snapshot.config_mode
    if snapshot.browser_path:
        nav.browser_path = snapshot.browser_path

    nav.log_level_filter = snapshot.log_level_filter
    nav.log_source_filter = snapshot.log_source_filter
    nav.log_type_filter = snapshot.log_type_filter
    nav.log_search_text = snapshot.log_search_text
    nav.log_scroll_offset = snapshot.log_scroll_offset
    nav.log_auto_scroll = snapshot.log_auto_scroll

    nav.git_show_diff = snapshot.git_show_diff
    if snapshot.build_profile:
        nav.build_profile = snapshot.build_profile

    if nav.current_view is ViewKind.CONFIG and nav.config_mode == "browser":
        nav.load_browser_entries()

    state.set_current_view(nav.current_view)
    nav.update_item_counts(state)
    logger.info(
        "Restored navigation: view=%s focus=%s main=%d sessions=%d",
        nav.current_view.value,
        nav.focus_area.name.lower(),
        nav.main_index,
        len(snapshot.active_session_ids),
    )

    if on_restore is not None:
        on_restore(snapshot)
