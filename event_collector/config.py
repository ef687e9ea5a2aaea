"""Configuration management for the event collector."""

import codecs
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator, model_validator

from .models import Level

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/collector.yaml"
DEFAULT_OUTPUT_DIRECTORY = "logs"
DEFAULT_OUTPUT_STEM = "collected_events"

_LIST_SPLIT = re.compile(r"[,;]")


class ConfigError(Exception):
    """The configuration store could not be read at all."""


class OutputFormat(str, Enum):
    TEXT = "text"
    CSV = "csv"


class RotationMode(str, Enum):
    NONE = "none"
    SIZE = "size"
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"

    @property
    def is_dated(self) -> bool:
        return self in (RotationMode.HOURLY, RotationMode.DAILY, RotationMode.MONTHLY)


def split_names(value: Any) -> list[str]:
    """Split a comma/semicolon separated string (or list of such strings) into trimmed, non-empty names."""
    if value is None:
        return []
    if isinstance(value, str):
        parts = _LIST_SPLIT.split(value)
    else:
        parts = []
        for item in value:
            parts.extend(_LIST_SPLIT.split(str(item)))
    return [p.strip() for p in parts if p.strip()]


class SSHConfig(BaseModel):
    """Credentials and limits for remote hosts."""
    username: Optional[str] = Field(default=None, description="SSH username (default: current user)")
    port: int = Field(default=22, ge=1, le=65535, description="SSH port")
    key_filename: Optional[str] = Field(default=None, description="Private key file (default: agent/known keys)")
    connect_timeout: float = Field(default=10.0, gt=0, description="Connect timeout in seconds")
    allow_unknown_hosts: bool = Field(default=True, description="Accept host keys not in known_hosts")


class CollectorConfig(BaseModel):
    """Main configuration for the event collector."""

    # Service settings
    interval_seconds: int = Field(default=300, gt=0, description="Seconds between collection cycles")
    log_level: str = Field(default="INFO", description="Logging level of the collector itself")
    log_file: Optional[str] = Field(default=None, description="Also write collector logs to this file")

    # Targets
    hosts: list[str] = Field(default_factory=list, description="Hosts to query, empty for the local machine")
    logs: list[str] = Field(default_factory=list, description="Log names to query, empty for all logs")
    max_level: Optional[Level] = Field(default=None, description="Severity ceiling, None for all levels")
    query_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout per source command")
    max_workers: int = Field(default=4, ge=1, description="Hosts queried concurrently")
    ssh: SSHConfig = Field(default_factory=SSHConfig)

    # Output settings
    output_path: Optional[str] = Field(default=None, description="Output file, default logs/collected_events.<ext>")
    output_format: OutputFormat = Field(default=OutputFormat.TEXT, description="text or csv")
    csv_delimiter: str = Field(default=",", description="CSV field delimiter")
    encoding: str = Field(default="utf-8", description="Output file encoding")
    rotation_size_kb: int = Field(default=0, ge=0, description="Size threshold in KB for size rotation")
    rotation: RotationMode = Field(default=RotationMode.NONE, description="Output file rotation discipline")
    retention_count: int = Field(default=0, ge=0, description="Output files to keep, 0 for unbounded")

    @model_validator(mode="before")
    @classmethod
    def _numeric_rotation(cls, data: Any) -> Any:
        # "rotation: 1024" means rotate by size at 1024 KB
        if isinstance(data, dict):
            raw = data.get("rotation")
            if isinstance(raw, int) and not isinstance(raw, bool) and raw > 0:
                data = {**data, "rotation": RotationMode.SIZE, "rotation_size_kb": raw}
            elif isinstance(raw, str) and raw.strip().isdigit() and int(raw) > 0:
                data = {**data, "rotation": RotationMode.SIZE, "rotation_size_kb": int(raw)}
        return data

    @field_validator("hosts", "logs", mode="before")
    @classmethod
    def _split_lists(cls, value: Any) -> list[str]:
        return split_names(value)

    @field_validator("max_level", mode="before")
    @classmethod
    def _parse_ceiling(cls, value: Any) -> Optional[Level]:
        return Level.parse_ceiling(value)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = str(value).strip().upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {value}")
        return value

    @field_validator("output_path", "log_file")
    @classmethod
    def _expand_path(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not str(value).strip():
            return None
        return os.path.expanduser(os.path.expandvars(str(value).strip()))

    @field_validator("output_format", "rotation", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("csv_delimiter")
    @classmethod
    def _check_delimiter(cls, value: str) -> str:
        if value not in {",", ";"}:
            raise ValueError("csv_delimiter must be ',' or ';'")
        return value

    @field_validator("encoding")
    @classmethod
    def _check_encoding(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError as e:
            raise ValueError(str(e)) from e
        return value

    @field_validator("rotation")
    @classmethod
    def _check_size_threshold(cls, value: RotationMode, info: ValidationInfo) -> RotationMode:
        if value is RotationMode.SIZE and int(info.data.get("rotation_size_kb") or 0) <= 0:
            raise ValueError("size rotation needs rotation_size_kb > 0")
        return value

    @property
    def resolved_output_path(self) -> str:
        if self.output_path:
            return self.output_path
        ext = ".csv" if self.output_format is OutputFormat.CSV else ".txt"
        return str(Path(DEFAULT_OUTPUT_DIRECTORY) / f"{DEFAULT_OUTPUT_STEM}{ext}")

    @property
    def rotation_size_bytes(self) -> int:
        return self.rotation_size_kb * 1024


def _env_overrides() -> dict[str, Any]:
    env_overrides = {
        "hosts": os.getenv("EVENT_COLLECTOR_HOSTS"),
        "logs": os.getenv("EVENT_COLLECTOR_LOGS"),
        "output_path": os.getenv("EVENT_COLLECTOR_OUTPUT"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    return {key: value for key, value in env_overrides.items() if value is not None}


class ConfigProvider:
    """Reads the YAML configuration store and keeps the last known good configuration.

    The store is re-read on every ``reload()``. Invalid individual values are
    rejected with a warning and the previous value is kept; an unreadable store
    raises ConfigError.
    """

    def __init__(self, config_path: Optional[str] = None, required: bool = True):
        if config_path is None:
            config_path = os.getenv("EVENT_COLLECTOR_CONFIG", DEFAULT_CONFIG_PATH)
        self.config_path = Path(config_path)
        self.required = required
        self._current: Optional[CollectorConfig] = None

    @property
    def current(self) -> CollectorConfig:
        if self._current is None:
            return self.reload()
        return self._current

    def _read_store(self) -> dict[str, Any]:
        if not self.config_path.exists():
            if self.required:
                raise ConfigError(f"Configuration file not found: {self.config_path}")
            return {}
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read configuration file {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {self.config_path} must contain a mapping")
        return data

    def reload(self) -> CollectorConfig:
        """Re-read the store and return the effective configuration."""
        raw = self._read_store()
        raw.update(_env_overrides())

        previous = self._current
        # keys missing from the store take their defaults, rejected keys their previous value
        fallback = (previous or CollectorConfig()).model_dump()
        kept: dict[str, Any] = {}
        candidate = dict(raw)
        config = None

        while config is None:
            try:
                config = CollectorConfig.model_validate({**kept, **candidate})
            except ValidationError as exc:
                if not candidate:
                    config = previous or CollectorConfig()
                    break
                rejected = {str(err["loc"][0]) for err in exc.errors() if err["loc"]} & candidate.keys()
                if not rejected:
                    logger.warning("Configuration rejected, keeping previous values",
                                   path=str(self.config_path), error=str(exc))
                    rejected = set(candidate)
                for key in sorted(rejected):
                    logger.warning("Invalid configuration value, keeping previous value",
                                   key=key, value=candidate.pop(key), previous=fallback.get(key))
                    if key in fallback:
                        kept[key] = fallback[key]

        unknown = sorted(set(raw) - set(CollectorConfig.model_fields))
        if unknown:
            logger.warning("Ignoring unknown configuration keys", keys=unknown)

        if previous is not None:
            old, new = previous.model_dump(), config.model_dump()
            for key in CollectorConfig.model_fields:
                if old[key] != new[key]:
                    logger.info("Configuration value changed", key=key, old=old[key], new=new[key])

        self._current = config
        return config


def load_config(config_path: Optional[str] = None) -> CollectorConfig:
    """Load configuration from file (if present) and environment variables."""
    return ConfigProvider(config_path, required=False).reload()
