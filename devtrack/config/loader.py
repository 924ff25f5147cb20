import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from devtrack.config.schema import DevtrackConfig
from devtrack.core.errors import ConfigError
from devtrack.logging_config import get_logger
from devtrack.paths import resolve_config_path
from devtrack.utils import expand_env_vars

logger = get_logger(__name__)


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)
        elif isinstance(field_value, list):
            for index, item in enumerate(field_value):
                if isinstance(item, BaseModel):
                    _warn_unknown_keys(item, f"{path}.{field_name}[{index}]", config_path)


def _load_env_file(config_path: Path) -> None:
    """Load a .env next to the config file (or DEVTRACK_ENV_PATH)."""
    env_override = os.getenv("DEVTRACK_ENV_PATH")
    env_path = Path(env_override).expanduser() if env_override else config_path.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)


def load_config(path: Optional[Path] = None) -> DevtrackConfig:
    """Load and validate configuration from a YAML file.

    A missing file yields the defaults. An unreadable file is logged and also
    yields the defaults; a file that fails validation raises ConfigError.
    """
    config_path = path or resolve_config_path()
    _load_env_file(config_path)

    if not config_path.exists():
        logger.debug("No config file at %s, using defaults", config_path)
        return DevtrackConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read config file %s: %s", config_path, e)
        return DevtrackConfig()

    expanded = expand_env_vars(raw)
    try:
        model = DevtrackConfig.model_validate(expanded)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e
    _warn_unknown_keys(model, "root", config_path)
    logger.info("Loaded config from %s (%d projects)", config_path, len(model.projects))
    return model


def save_config(config: DevtrackConfig, path: Optional[Path] = None) -> Path:
    """Write config back as YAML, replacing the file atomically."""
    config_path = path or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    tmp_path = config_path.with_suffix(".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)
        os.replace(tmp_path, config_path)
    except OSError as e:
        raise ConfigError(f"Failed to save config {config_path}: {e}") from e
    logger.info("Saved config to %s", config_path)
    return config_path
