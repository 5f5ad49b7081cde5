"""Configuration models for xloop."""

import os
import re
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

VALID_AGENTS = ("claude", "opencode")
DEFAULT_MODEL = "claude-sonnet-4-20250514"


class ModelsConfig(BaseModel):
    """Default model identifier per agent."""

    claude: str = Field(default=DEFAULT_MODEL, description="Model used with claude")
    opencode: str = Field(default=DEFAULT_MODEL, description="Model used with opencode")


class PhaseModelsConfig(BaseModel):
    """Optional per-phase model overrides."""

    implement: Optional[str] = Field(default=None, description="Implement phase model")
    review: Optional[str] = Field(default=None, description="Review phase model")
    finalize: Optional[str] = Field(default=None, description="Finalize phase model")


class RetrySettings(BaseModel):
    """Backoff settings for transient agent failures."""

    max_retries: int = Field(default=3, description="Retries after the first attempt")
    initial_delay: float = Field(default=1.0, description="First backoff delay in seconds")
    max_delay: float = Field(default=10.0, description="Backoff ceiling in seconds")

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        if v > 10:
            raise ValueError("max_retries cannot exceed 10")
        return v

    @field_validator("initial_delay", "max_delay")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Delay must be positive")
        return v

    @model_validator(mode="after")
    def validate_ceiling(self) -> "RetrySettings":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    output_dir: str = Field(default=".plans/logs", description="Activity log directory")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARN", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {', '.join(valid_levels)}")
        return v.upper()


class XLoopConfig(BaseModel):
    """Main xloop configuration."""

    default_agent: str = Field(default="claude", description="Agent used when none is given")
    models: ModelsConfig = Field(default_factory=ModelsConfig, description="Per-agent models")
    phase_models: PhaseModelsConfig = Field(
        default_factory=PhaseModelsConfig, description="Per-phase model overrides"
    )
    commit_prefix: str = Field(default="xloop", description="Prefix for commit messages")
    commit_tracking_files: bool = Field(
        default=True,
        description="Commit the task file and progress log with each finalized task",
    )
    feedback_command: str = Field(default="bun test", description="Test command for agents")
    lint_command: Optional[str] = Field(default=None, description="Lint command for agents")
    agent_timeout: Optional[float] = Field(
        default=None, description="Seconds before an agent process is killed"
    )
    retry: RetrySettings = Field(default_factory=RetrySettings, description="Retry settings")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging")

    @field_validator("default_agent")
    @classmethod
    def validate_agent(cls, v: str) -> str:
        if v not in VALID_AGENTS:
            raise ValueError(f"default_agent must be one of: {', '.join(VALID_AGENTS)}")
        return v

    @field_validator("commit_prefix", "feedback_command")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Value cannot be empty")
        return v.strip()

    @field_validator("agent_timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("agent_timeout must be positive")
        return v

    def model_for(self, agent: str, phase: Optional[str] = None) -> str:
        """Resolve the model for an agent and phase (phase override wins)."""
        if phase:
            override = getattr(self.phase_models, phase, None)
            if override:
                return override
        return getattr(self.models, agent)

    def resolve_env_vars(self) -> "XLoopConfig":
        """Resolve environment variables in configuration values."""
        config_dict = self.model_dump()
        resolved_dict = _resolve_env_vars_recursive(config_dict)
        return XLoopConfig(**resolved_dict)

    def get_log_dir(self, project_dir: Path) -> Path:
        """Get the activity log directory, relative to the project."""
        log_dir = Path(self.logging.output_dir).expanduser()
        if not log_dir.is_absolute():
            log_dir = Path(project_dir) / log_dir
        return log_dir


def _resolve_env_vars_recursive(obj: Any) -> Any:
    """Recursively resolve environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _resolve_env_vars_recursive(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_resolve_env_vars_recursive(item) for item in obj]
    elif isinstance(obj, str):
        return _resolve_env_var_string(obj)
    else:
        return obj


def _resolve_env_var_string(value: str) -> str:
    """Resolve environment variables in a string."""
    # Pattern for ${VAR_NAME} or ${VAR_NAME:default_value}
    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replace_var(match):
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.getenv(var_name, default_value)

    return re.sub(pattern, replace_var, value)
