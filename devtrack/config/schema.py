from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from devtrack.constants import TERMINAL_DEFAULT_COLS, TERMINAL_DEFAULT_ROWS


class ComponentConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    type: str  # e.g. "backend", "frontend", "cli"
    path: str = "."  # relative to the project root
    build: List[str] = []  # build steps, run in order
    run: Optional[str] = None  # long-running command for the supervisor
    binary: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    enabled: bool = True


class DatabaseConnectionConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    type: Literal["postgres", "mysql", "sqlite"]
    name: str
    host: str = "localhost"
    port: Optional[int] = None
    user: Optional[str] = None


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: str
    path: str
    name: Optional[str] = None
    type: str = "generic"
    components: List[ComponentConfig] = []
    databases: List[DatabaseConnectionConfig] = []

    @property
    def display_name(self) -> str:
        return self.name or self.id


class TerminalConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    tmux_binary: str = "tmux"
    capture_interval_ms: int = Field(default=100, ge=10)
    scrollback_lines: int = Field(default=500, ge=0)
    default_cols: int = Field(default=TERMINAL_DEFAULT_COLS, ge=10)
    default_rows: int = Field(default=TERMINAL_DEFAULT_ROWS, ge=5)
    reserved_keys: List[str] = ["ctrl+g", "tab", "shift+tab"]
    assistant_command: str = "claude"
    shell_command: Optional[str] = None  # falls back to $SHELL, then /bin/sh
    database_clients: Dict[str, str] = {"postgres": "psql", "mysql": "mysql", "sqlite": "sqlite3"}

    @field_validator("reserved_keys")
    @classmethod
    def normalize_keys(cls, v: List[str]) -> List[str]:
        return [key.strip().lower() for key in v if key.strip()]


class SettingsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    refresh_rate_ms: int = Field(default=5000, ge=100)
    parallel_builds: int = Field(default=4, ge=1)
    state_dir: str = "~/.devtrack"


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    level: str = "INFO"
    file: Optional[str] = None


class DevtrackConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    settings: SettingsConfig = SettingsConfig()
    terminal: TerminalConfig = TerminalConfig()
    logging: LoggingConfig = LoggingConfig()
    projects: List[ProjectConfig] = []

    @model_validator(mode="after")
    def validate_unique_projects(self) -> "DevtrackConfig":
        seen: set[str] = set()
        for project in self.projects:
            if project.id in seen:
                raise ValueError(f"Duplicate project id: {project.id}")
            seen.add(project.id)
        return self

    @property
    def state_dir(self) -> Path:
        return Path(self.settings.state_dir).expanduser()

    @property
    def log_file(self) -> Optional[Path]:
        return Path(self.logging.file).expanduser() if self.logging.file else None
