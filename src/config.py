"""Configuration management for the Caseload engine."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_REPO_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "caseload.yml"
_USER_CONFIG_PATHS = [
    Path("~/.config/caseload/caseload.yml").expanduser(),
    Path("/config/caseload.yml"),
]
_USER_SECRETS_PATHS = [
    Path("~/.config/caseload/secrets.yml").expanduser(),
    Path("/config/secrets.yml"),
]


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from disk, returning an empty mapping if missing."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def _yaml_settings_source(paths: list[Path]):
    """Create a Pydantic settings source for a list of YAML paths."""

    def source() -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for path in paths:
            merged.update(_load_yaml(path))
        return merged

    return source


def _set_nested_value(target: dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted-path value on a nested mapping, creating containers."""
    parts = path.split(".")
    cursor = target
    for key in parts[:-1]:
        node = cursor.get(key)
        if not isinstance(node, dict):
            node = {}
            cursor[key] = node
        cursor = node
    cursor[parts[-1]] = value


def _parse_env_value(raw: str, kind: str) -> Any:
    """Parse an environment value into the requested primitive type."""
    if kind == "int":
        return int(raw)
    if kind == "float":
        return float(raw)
    if kind == "bool":
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if kind == "json":
        return json.loads(raw)
    return raw


def _env_settings_source():
    """Create a settings source that maps environment variables to config keys."""
    mapping = {
        "DATABASE_URL": ("database.url", "str"),
        "LOG_LEVEL": ("log_level", "str"),
        "LOG_JSON": ("log_json", "bool"),
        "USER_TIMEZONE": ("user.timezone", "str"),
        "OVERLOAD_THRESHOLD": ("workload.overload_threshold", "float"),
        "IMPROVEMENT_MARGIN": ("workload.improvement_margin", "float"),
        "ELIGIBLE_ROLES": ("workload.eligible_roles", "json"),
        "DEADLINE_INTERVAL_SECONDS": ("scheduler.deadline_interval_seconds", "int"),
        "BOTTLENECK_INTERVAL_SECONDS": ("scheduler.bottleneck_interval_seconds", "int"),
        "RECURRENCE_INTERVAL_SECONDS": ("scheduler.recurrence_interval_seconds", "int"),
        "SCHEDULER_MAX_WORKERS": ("scheduler.max_workers", "int"),
        "ADVISORY_ENABLED": ("advisory.enabled", "bool"),
        "ADVISORY_URL": ("advisory.url", "str"),
        "ADVISORY_TIMEOUT_SECONDS": ("advisory.timeout_seconds", "float"),
    }

    def source() -> dict[str, Any]:
        data: dict[str, Any] = {}
        for env_key, (path, kind) in mapping.items():
            raw = os.environ.get(env_key)
            if raw is None:
                continue
            _set_nested_value(data, path, _parse_env_value(raw, kind))
        return data

    return source


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str | None = None


class HttpConfig(BaseModel):
    """Outbound HTTP client defaults."""

    timeout: int = 30
    connect_timeout: int = 10


class DepartmentWorkloadOverride(BaseModel):
    """Per-department overrides for rebalancing thresholds."""

    overload_threshold: float | None = None
    improvement_margin: float | None = None


class WorkloadConfig(BaseModel):
    """Workload scoring and rebalancing defaults."""

    overload_threshold: float = 40.0
    improvement_margin: float = 10.0
    department_overrides: dict[str, DepartmentWorkloadOverride] = Field(default_factory=dict)
    eligible_roles: list[str] = Field(default_factory=lambda: ["doctor", "nurse"])
    performance_window_days: int = 30

    @field_validator("overload_threshold")
    @classmethod
    def validate_overload_threshold(cls, value: float) -> float:
        """Ensure the overload threshold is non-negative."""
        if value < 0:
            raise ValueError("workload.overload_threshold must be >= 0.")
        return value

    @field_validator("improvement_margin")
    @classmethod
    def validate_improvement_margin(cls, value: float) -> float:
        """Ensure the improvement margin is non-negative."""
        if value < 0:
            raise ValueError("workload.improvement_margin must be >= 0.")
        return value

    @field_validator("eligible_roles")
    @classmethod
    def validate_eligible_roles(cls, value: list[str]) -> list[str]:
        """Normalize eligible role names and reject an empty list."""
        normalized = [role.strip().lower() for role in value if role and role.strip()]
        if not normalized:
            raise ValueError("workload.eligible_roles must name at least one role.")
        return normalized

    @field_validator("performance_window_days")
    @classmethod
    def validate_performance_window_days(cls, value: int) -> int:
        """Ensure the performance window is positive."""
        if value < 1:
            raise ValueError("workload.performance_window_days must be >= 1.")
        return value

    def threshold_for(self, department: str) -> float:
        """Return the overload threshold for a department."""
        override = self.department_overrides.get(department)
        if override is not None and override.overload_threshold is not None:
            return override.overload_threshold
        return self.overload_threshold

    def margin_for(self, department: str) -> float:
        """Return the improvement margin for a department."""
        override = self.department_overrides.get(department)
        if override is not None and override.improvement_margin is not None:
            return override.improvement_margin
        return self.improvement_margin


class SchedulerConfig(BaseModel):
    """Sweep cadence and worker pool configuration."""

    deadline_interval_seconds: int = 15 * 60
    bottleneck_interval_seconds: int = 60 * 60
    recurrence_interval_seconds: int = 60
    deadline_window_hours: int = 24
    max_workers: int = 3

    @field_validator(
        "deadline_interval_seconds",
        "bottleneck_interval_seconds",
        "recurrence_interval_seconds",
    )
    @classmethod
    def validate_interval(cls, value: int) -> int:
        """Ensure sweep intervals are positive."""
        if value < 1:
            raise ValueError("scheduler sweep intervals must be >= 1 second.")
        return value

    @field_validator("deadline_window_hours")
    @classmethod
    def validate_deadline_window_hours(cls, value: int) -> int:
        """Ensure the deadline window is positive."""
        if value < 1:
            raise ValueError("scheduler.deadline_window_hours must be >= 1.")
        return value

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, value: int) -> int:
        """Ensure the worker pool has at least one thread."""
        if value < 1:
            raise ValueError("scheduler.max_workers must be >= 1.")
        return value


class AdvisoryConfig(BaseModel):
    """Optional advisory signal endpoint configuration."""

    enabled: bool = False
    url: str | None = None
    timeout_seconds: float = 5.0

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout_seconds(cls, value: float) -> float:
        """Ensure the advisory timeout is positive."""
        if value <= 0:
            raise ValueError("advisory.timeout_seconds must be > 0.")
        return value

    @model_validator(mode="after")
    def validate_url_when_enabled(self) -> "AdvisoryConfig":
        """Require an endpoint URL when the advisory signal is enabled."""
        if self.enabled and not self.url:
            raise ValueError("advisory.url must be set when advisory.enabled is true.")
        return self


class UserConfig(BaseModel):
    """Local presentation and wall-clock configuration."""

    timezone: str = "UTC"

    @model_validator(mode="after")
    def validate_timezone(self) -> "UserConfig":
        """Ensure the configured timezone is valid."""
        try:
            ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Invalid timezone: {self.timezone}") from exc
        return self


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Layer settings sources in descending order of precedence."""
        return (
            init_settings,
            _env_settings_source(),
            _yaml_settings_source(_USER_SECRETS_PATHS),
            _yaml_settings_source(_USER_CONFIG_PATHS),
            _yaml_settings_source([_DEFAULT_CONFIG_PATH]),
        )

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Database Configuration
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Outbound HTTP
    http: HttpConfig = Field(default_factory=HttpConfig)

    # Workload Scoring and Rebalancing
    workload: WorkloadConfig = Field(default_factory=WorkloadConfig)

    # Sweep Scheduling
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    # Advisory Signal
    advisory: AdvisoryConfig = Field(default_factory=AdvisoryConfig)

    # User Context
    user: UserConfig = Field(default_factory=UserConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Ensure log_level names a standard logging level."""
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log_level: {value}")
        return normalized


# Global settings instance
settings = Settings()
