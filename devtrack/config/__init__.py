"""Configuration models and loading.

Configuration is loaded explicitly and passed to the components that need it:

    config = load_config()
    runtime = ConsoleRuntime(config)
"""

from devtrack.config.loader import load_config, save_config
from devtrack.config.schema import (
    ComponentConfig,
    DatabaseConnectionConfig,
    DevtrackConfig,
    LoggingConfig,
    ProjectConfig,
    SettingsConfig,
    TerminalConfig,
)

__all__ = [
    "ComponentConfig",
    "DatabaseConnectionConfig",
    "DevtrackConfig",
    "LoggingConfig",
    "ProjectConfig",
    "SettingsConfig",
    "TerminalConfig",
    "load_config",
    "save_config",
]
