"""Reference adapters for the upstream collaborators in devtrack.core.upstream."""

from devtrack.services.builds import CommandBuildOrchestrator
from devtrack.services.git_status import GitStatusService
from devtrack.services.processes import SubprocessSupervisor
from devtrack.services.projects import ConfigProjectRegistry

__all__ = [
    "CommandBuildOrchestrator",
    "ConfigProjectRegistry",
    "GitStatusService",
    "SubprocessSupervisor",
]
