"""Configuration for the repair pipeline.

Settings come from (highest precedence first): explicit keyword overrides
(usually CLI flags), ``AUTOREMEDY_*`` environment variables / ``.env`` in the
project root, an optional ``autoremedy.yaml`` in the project root, then the
defaults below.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "autoremedy.yaml"


class HealthProbeConfig(BaseModel):
    """One HTTP readiness probe polled during HealthVerify."""

    name: str
    url: str
    timeout_seconds: float = 5.0
    # Extra statuses treated as healthy on top of 2xx (e.g. redirects)
    accept_statuses: list[int] = Field(default_factory=list)
    # Any HTTP response at all counts as healthy (reverse proxies)
    accept_any: bool = False


def _default_probes() -> list[HealthProbeConfig]:
    return [
        HealthProbeConfig(name="backend", url="http://localhost:5050/health"),
        HealthProbeConfig(
            name="frontend", url="http://localhost:3000", accept_statuses=[301, 308]
        ),
        HealthProbeConfig(name="proxy", url="http://localhost:80", accept_any=True),
    ]


class Settings(BaseSettings):
    """Repair pipeline settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTOREMEDY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Retry loop
    max_retries: int = 3
    max_same_signature_failures: int = 3
    memory_success_threshold: float = 0.5

    # External commands
    build_command: str = "docker-compose build --no-cache"
    up_command: str = "docker-compose up -d"
    compose_command: str = "docker-compose"
    compose_file: str = "docker-compose.yml"
    build_timeout_seconds: int = 900
    launch_timeout_seconds: int = 60
    fix_timeout_seconds: int = 120

    # Project layout
    package_dirs: list[str] = Field(default_factory=lambda: ["."])
    syntax_check_files: list[str] = Field(default_factory=list)
    memory_path: str = "data/repair-memory.json"
    # Extra YAML pattern definitions, registered after the built-in ones
    pattern_files: list[str] = Field(default_factory=list)

    # Logging
    log_dir: str = "data"
    log_filename: str = "autoremedy.log"
    log_level: str = "INFO"

    # HealthVerify
    settle_delay_seconds: float = 10.0
    health_probes: list[HealthProbeConfig] = Field(default_factory=_default_probes)
    container_name_filter: str = ""

    # Phase switches
    skip_preflight: bool = False
    skip_lockcheck: bool = False

    @field_validator("max_retries", "max_same_signature_failures")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("memory_success_threshold")
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("must lie in [0, 1]")
        return v

    @field_validator("fix_timeout_seconds", "build_timeout_seconds", "launch_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    def resolve_path(self, project_root: Path, value: str) -> Path:
        """Resolve a project-relative setting against ``project_root``."""
        path = Path(value)
        if path.is_absolute():
            return path
        return Path(project_root) / path

    def memory_file(self, project_root: Path) -> Path:
        return self.resolve_path(project_root, self.memory_path)

    def log_directory(self, project_root: Path) -> Path:
        return self.resolve_path(project_root, self.log_dir)


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def load_settings(
    project_root: Optional[Path] = None,
    config_path: Optional[Path] = None,
    **overrides: Any,
) -> Settings:
    """Load settings for a project.

    Args:
        project_root: Project root; ``autoremedy.yaml`` there is read if present
        config_path: Explicit YAML config file (must exist)
        **overrides: Values that beat every other source. ``None`` values are ignored.

    Returns:
        Validated Settings

    Raises:
        ConfigError: If the YAML file is unreadable or any value is invalid
    """
    file_data: dict[str, Any] = {}
    if config_path is not None:
        if not Path(config_path).exists():
            raise ConfigError(f"Config file not found: {config_path}")
        file_data = _read_yaml(Path(config_path))
    elif project_root is not None:
        candidate = Path(project_root) / DEFAULT_CONFIG_FILENAME
        if candidate.exists():
            file_data = _read_yaml(candidate)

    if file_data:
        logger.debug(f"[Config] Loaded {len(file_data)} keys from YAML config")

    explicit = {k: v for k, v in overrides.items() if v is not None}
    env_file = Path(project_root) / ".env" if project_root is not None else ".env"

    try:
        # First pass: environment + overrides only, to learn which fields they set
        layered = Settings(_env_file=env_file, **explicit)
        from_env = layered.model_dump(include=layered.model_fields_set)
        return Settings(_env_file=env_file, **{**file_data, **from_env, **explicit})
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e
