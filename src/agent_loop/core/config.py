"""Configuration loading and validation."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "agent-loop.yaml"

DEFAULT_HANG_SIGNATURES = [
    "No messages returned",
    "rejected promise with an unhandled reason",
]
DEFAULT_COMPLETION_MARKER = "<promise>COMPLETE</promise>"


class AgentConfig(BaseModel):
    """How the agent CLI is invoked."""
    executable: str = "claude"
    skip_permissions_flag: str = "--dangerously-skip-permissions"
    extra_args: List[str] = Field(default_factory=lambda: ["--print"])
    working_dir: Optional[Path] = None  # None = workspace
    stream_output: bool = True  # Echo agent output to the console as it arrives
    env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("executable")
    @classmethod
    def validate_executable(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("agent.executable must not be empty")
        return v

    def build_command(self) -> List[str]:
        cmd = [self.executable]
        if self.skip_permissions_flag:
            cmd.append(self.skip_permissions_flag)
        cmd.extend(self.extra_args)
        return cmd


class SafeguardsConfig(BaseModel):
    """Loop bounds and timing."""
    safe_iteration_threshold: int = 50  # Larger runs need interactive confirmation
    max_consecutive_failures: int = 3
    poll_interval: float = 0.5  # Hang-check cadence while the agent is silent (seconds)
    retry_delay: float = 2.0  # Pause after a failed iteration (seconds)
    kill_timeout: float = 5.0  # Bounded wait for a killed process tree (seconds)

    @field_validator("safe_iteration_threshold", "max_consecutive_failures")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator("poll_interval", "kill_timeout")
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be > 0, got {v}")
        return v

    @field_validator("retry_delay")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"must be >= 0, got {v}")
        return v


class MarkerConfig(BaseModel):
    """Fixed strings searched for in agent output."""
    hang_signatures: List[str] = Field(default_factory=lambda: list(DEFAULT_HANG_SIGNATURES))
    completion_marker: str = DEFAULT_COMPLETION_MARKER

    @field_validator("hang_signatures")
    @classmethod
    def validate_signatures(cls, v: List[str]) -> List[str]:
        if any(not s.strip() for s in v):
            raise ValueError("hang signatures must be non-empty strings")
        return v

    @field_validator("completion_marker")
    @classmethod
    def validate_marker(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("completion_marker must not be empty")
        return v


class ContextFilesConfig(BaseModel):
    """Context documents that must exist before the loop starts.

    Paths are relative to the workspace unless absolute.
    """
    vision: Path = Path("VISION.md")
    agent_instructions: Path = Path("AGENTS.md")
    guardrails: Path = Path("GUARDRAILS.md")
    prompt: Path = Path("PROMPT.md")

    def required(self) -> List[tuple]:
        """(description, path) pairs in the order they are checked."""
        return [
            ("vision document", self.vision),
            ("agent instructions document", self.agent_instructions),
            ("guardrails document", self.guardrails),
            ("prompt document", self.prompt),
        ]


class LoopSettings(BaseSettings):
    """Main loop configuration."""
    model_config = SettingsConfigDict(
        env_prefix="AGENT_LOOP_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    agent: AgentConfig = Field(default_factory=AgentConfig)
    safeguards: SafeguardsConfig = Field(default_factory=SafeguardsConfig)
    markers: MarkerConfig = Field(default_factory=MarkerConfig)
    files: ContextFilesConfig = Field(default_factory=ContextFilesConfig)
    log_dir: Path = Path("logs")
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level '{v}'")
        return level


class RunConfiguration(BaseModel):
    """Everything one run needs. Built once at start, never mutated."""
    model_config = ConfigDict(frozen=True)

    iterations: int
    payload: str
    workspace: Path
    settings: LoopSettings

    @field_validator("iterations")
    @classmethod
    def validate_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"iteration count must be positive, got {v}")
        return v

    @property
    def safe_iteration_threshold(self) -> int:
        return self.settings.safeguards.safe_iteration_threshold

    @property
    def max_consecutive_failures(self) -> int:
        return self.settings.safeguards.max_consecutive_failures

    @property
    def needs_confirmation(self) -> bool:
        return self.iterations > self.safe_iteration_threshold


def _load_settings_from_file(config_path: Path) -> LoopSettings:
    """Internal loader for loop settings."""
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid yaml in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid yaml in {config_path}: expected a mapping at top level")

    data = _expand_env_vars(data)
    try:
        return LoopSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"{config_path}: {e}") from e


def load_settings(config_path: Path = Path(DEFAULT_CONFIG_FILE), required: bool = False) -> LoopSettings:
    """Load loop settings from a YAML file.

    A missing file falls back to the defaults (plus any AGENT_LOOP_*
    environment overrides) unless required is set, as it is for a path the
    user named explicitly.

    Raises:
        ConfigurationError: Invalid file, or a required file is missing
    """
    if not config_path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {config_path}")
        logger.debug(f"Config file not found: {config_path}. Using default configuration.")
        try:
            return LoopSettings()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid AGENT_LOOP_* environment: {e}") from e

    return _load_settings_from_file(config_path)


def resolve_path(workspace: Path, path: Path) -> Path:
    """Resolve a configured path against the workspace."""
    path = Path(path)
    return path if path.is_absolute() else workspace / path


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ${VAR} values in config data.

    Args:
        data: Config data to process
        _path: Internal tracking for warnings (e.g., "agent.executable")
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
                f"The literal string '{data}' will be used."
            )
            return data
        return value
    return data
