"""UI-side state: navigation and the detach/reattach snapshot."""

from devtrack.tui.navigation import FocusArea, NavigationState
from devtrack.tui.reattach import ReattachSnapshot, export_snapshot, import_snapshot
from devtrack.tui.snapshot_store import SnapshotStore

__all__ = [
    "FocusArea",
    "NavigationState",
    "ReattachSnapshot",
    "SnapshotStore",
    "export_snapshot",
    "import_snapshot",
]
