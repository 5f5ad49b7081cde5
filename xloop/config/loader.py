"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from xloop.config.models import VALID_AGENTS, XLoopConfig
from xloop.core.exceptions import ConfigurationError

PROJECT_CONFIG_NAME = "xloop.config.yaml"


def load_config(
    project_dir: Optional[Path] = None,
    config_path: Optional[Path] = None,
    global_config_path: Optional[Path] = None,
) -> XLoopConfig:
    """Load xloop configuration from multiple sources.

    Configuration is loaded in the following order (later sources override earlier ones):
    1. Default configuration (built into the models)
    2. Global configuration (~/.config/xloop/config.yaml)
    3. Project configuration (<project_dir>/.plans/xloop.config.yaml)
    4. Explicit config_path provided as an argument

    Args:
        project_dir: Project root (defaults to the current directory)
        config_path: Explicit path to a config file
        global_config_path: Explicit path to global config file

    Returns:
        Merged and validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or cannot be loaded
    """
    try:
        config_data: Dict[str, Any] = {}

        global_path = global_config_path or _get_global_config_path()
        if global_path and global_path.exists():
            config_data = _merge_config(config_data, _load_yaml_file(global_path))

        project_path = get_project_config_path(project_dir or Path.cwd())
        if project_path.exists():
            config_data = _merge_config(config_data, _load_yaml_file(project_path))

        if config_path is not None:
            if not config_path.exists():
                raise ConfigurationError(f"Configuration file not found: {config_path}")
            config_data = _merge_config(config_data, _load_yaml_file(config_path))

        config = XLoopConfig(**config_data)
        return config.resolve_env_vars()

    except ConfigurationError:
        raise
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def save_config(config: XLoopConfig, config_path: Path) -> None:
    """Save configuration to a YAML file.

    Raises:
        ConfigurationError: If configuration cannot be saved
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_dict = config.model_dump(exclude_none=True, mode="json")

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                config_dict,
                f,
                default_flow_style=False,
                sort_keys=False,
                indent=2,
                allow_unicode=True,
            )

    except OSError as e:
        raise ConfigurationError(
            f"Failed to save configuration to {config_path}: {e}"
        ) from e


def create_default_config() -> XLoopConfig:
    """Create a default configuration."""
    return XLoopConfig()


def resolve_agent(flag_agent: Optional[str], config: XLoopConfig) -> str:
    """Pick the agent to run: explicit flag > config default.

    Raises:
        ConfigurationError: If the flag names an unknown agent
    """
    if flag_agent:
        if flag_agent not in VALID_AGENTS:
            raise ConfigurationError(
                f'Agent "{flag_agent}" is not valid. Must be one of: {", ".join(VALID_AGENTS)}'
            )
        return flag_agent
    return config.default_agent


def get_project_config_path(project_dir: Path) -> Path:
    """Get the project configuration file path."""
    return Path(project_dir) / ".plans" / PROJECT_CONFIG_NAME


def _get_global_config_path() -> Optional[Path]:
    """Get the global configuration file path."""
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "xloop" / "config.yaml"

    return Path.home() / ".config" / "xloop" / "config.yaml"


def _load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """Load and parse a YAML file.

    Raises:
        ConfigurationError: If file cannot be loaded or parsed
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {file_path}: {e}") from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file must contain a YAML object, got {type(data).__name__}"
        )

    return data


def _merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge two configuration dictionaries recursively."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_config(result[key], value)
        else:
            result[key] = value

    return result
