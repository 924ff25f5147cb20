"""Project registry backed by the YAML config."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Optional

from devtrack.config.loader import load_config, save_config
from devtrack.config.schema import ComponentConfig, DevtrackConfig, ProjectConfig
from devtrack.core.errors import ConfigError, UpstreamError
from devtrack.core.upstream import Component, Project
from devtrack.logging_config import get_logger

logger = get_logger(__name__)


def _component_from_config(component: ComponentConfig) -> Component:
    return Component(
        type=component.type,
        path=component.path,
        build=list(component.build),
        run=component.run or "",
        binary=component.binary or "",
        port=component.port,
        enabled=component.enabled,
    )


def project_from_config(project: ProjectConfig) -> Project:
    return Project(
        id=project.id,
        name=project.display_name,
        path=str(Path(project.path).expanduser()),
        type=project.type,
        components=[_component_from_config(c) for c in project.components],
    )


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "project"


class ConfigProjectRegistry:
    """Projects declared under ``projects:`` in the config file.

    add/remove persist the file when a config path is given.
    """

    def __init__(self, config: DevtrackConfig, config_path: Optional[Path] = None) -> None:
        self._config = config
        self._config_path = config_path
        self._lock = asyncio.Lock()

    @property
    def config(self) -> DevtrackConfig:
        return self._config

    def replace_config(self, config: DevtrackConfig) -> None:
        self._config = config

    async def list_projects(self) -> list[Project]:
        return [project_from_config(p) for p in self._config.projects]

    async def get_project(self, project_id: str) -> Optional[Project]:
        for project in self._config.projects:
            if project.id == project_id:
                return project_from_config(project)
        return None

    async def add_project(self, path: str, name: str = "") -> Project:
        resolved = Path(path).expanduser().resolve()
        if not resolved.is_dir():
            raise UpstreamError(f"Not a directory: {resolved}")
        async with self._lock:
            existing = {p.id for p in self._config.projects}
            base_id = slugify(name or resolved.name)
            project_id = base_id
            suffix = 2
            while project_id in existing:
                project_id = f"{base_id}-{suffix}"
                suffix += 1
            entry = ProjectConfig(id=project_id, path=str(resolved), name=name or resolved.name)
            self._config = self._config.model_copy(update={"projects": [*self._config.projects, entry]})
            await self._persist()
        logger.info("Added project %s at %s", project_id, resolved)
        return project_from_config(entry)

    async def remove_project(self, project_id: str) -> None:
        async with self._lock:
            remaining = [p for p in self._config.projects if p.id != project_id]
            if len(remaining) == len(self._config.projects):
                raise UpstreamError(f"Project not found: {project_id}")
            self._config = self._config.model_copy(update={"projects": remaining})
            await self._persist()
        logger.info("Removed project %s", project_id)

    async def refresh_project(self, project_id: str) -> Project:
        """Re-read the project's entry from disk when the config is file-backed."""
        if self._config_path is not None:
            try:
                fresh = await asyncio.to_thread(load_config, self._config_path)
            except ConfigError as e:
                raise UpstreamError(str(e)) from e
            for project in fresh.projects:
                if project.id == project_id:
                    others = [p for p in self._config.projects if p.id != project_id]
                    index = next((i for i, p in enumerate(self._config.projects) if p.id == project_id), len(others))
                    others.insert(index, project)
                    self._config = self._config.model_copy(update={"projects": others})
                    break
        project = await self.get_project(project_id)
        if project is None:
            raise UpstreamError(f"Project not found: {project_id}")
        return project

    async def _persist(self) -> None:
        if self._config_path is None:
            return
        try:
            await asyncio.to_thread(save_config, self._config, self._config_path)
        except ConfigError as e:
            raise UpstreamError(str(e)) from e
