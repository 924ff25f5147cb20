"""Error taxonomy for the coordination layer.

IntentError subclasses are caller/programmer errors and propagate out of
EventCoordinator.handle_event. Everything else is recoverable: the coordinator
converts it into a Notification instead of raising.
"""

from __future__ import annotations


class DevtrackError(Exception):
    """Base class for all devtrack errors."""


class IntentError(DevtrackError):
    """An intent could not be interpreted."""


class UnknownEventKind(IntentError):
    def __init__(self, kind: object) -> None:
        super().__init__(f"Unknown event type: {kind}")
        self.kind = kind


class UnknownViewKind(IntentError):
    def __init__(self, kind: object) -> None:
        super().__init__(f"Unknown view type: {kind}")
        self.kind = kind


class InvalidEventPayload(IntentError):
    """A recognized intent arrived without the fields its handler needs."""


class UpstreamError(DevtrackError):
    """An external collaborator (registry, builder, supervisor, VCS) failed."""


class BuildCancelled(DevtrackError):
    """A build observed its cancellation signal and stopped."""


class LaunchError(DevtrackError):
    """A session host could not be spawned or its command was not found."""

    def __init__(self, session_id: str, reason: str) -> None:
        super().__init__(f"Failed to start session {session_id[:8]}: {reason}")
        self.session_id = session_id
        self.reason = reason


class AttachError(DevtrackError):
    """Input was sent to a session that is not running."""


class ConfigError(DevtrackError):
    """Configuration could not be loaded, validated or saved."""
