from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .pipeline import (
    CheckpointStore,
    FileCheckpointStore,
    InMemoryCheckpointStore,
    Namespace,
    RetryPolicy,
    parse_namespaces,
)

REQUIRED_KEYS = ("MONGO_URI", "DATABASES", "TOPIC_PREFIX")


class ImportSettings(BaseSettings):
    """Importer configuration.

    Read from a dotenv-style file (KEY=value) given on the command line;
    process environment variables override file values. Producer options are
    passed through from `KAFKA__<OPTION>` keys.
    """

    MONGO_URI: str = Field(min_length=1)
    DATABASES: str = Field(min_length=1)
    TOPIC_PREFIX: str = Field(min_length=1)
    BATCH_SIZE: int = Field(default=1000, gt=0)
    HIGH_WATER_MARK: int = Field(default=3000, gt=0)
    POLL_INTERVAL: float = Field(default=0.1, gt=0)
    SCHEDULE: str = ""
    RETRY_MAX_ATTEMPTS: int = Field(default=0, ge=0, description="0 = unlimited")
    RETRY_INITIAL_BACKOFF_MS: int = Field(default=100, ge=0)
    RETRY_MAX_BACKOFF_MS: int = Field(default=5000, ge=0)
    JSON_MODE: Literal["relaxed", "canonical", "legacy"] = "relaxed"
    CHECKPOINT_PATH: Optional[str] = None
    METRICS_PORT: Optional[int] = None
    LOG_LEVEL: str = "INFO"
    KAFKA: dict[str, str] = Field(default_factory=dict)

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @property
    def namespaces(self) -> list[Namespace]:
        return parse_namespaces(self.DATABASES)

    @property
    def topics(self) -> dict[str, str]:
        return {str(ns): ns.topic(self.TOPIC_PREFIX) for ns in self.namespaces}

    @property
    def cron_mode(self) -> bool:
        return bool(self.SCHEDULE.strip())

    @property
    def kafka_options(self) -> dict[str, Any]:
        return dict(self.KAFKA)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_limit(
            self.RETRY_MAX_ATTEMPTS,
            initial_backoff_ms=self.RETRY_INITIAL_BACKOFF_MS,
            max_backoff_ms=self.RETRY_MAX_BACKOFF_MS,
        )

    def checkpoint_store(self) -> CheckpointStore:
        """A store for one run. Without CHECKPOINT_PATH every run starts over."""
        if self.CHECKPOINT_PATH:
            return FileCheckpointStore(self.CHECKPOINT_PATH)
        return InMemoryCheckpointStore()


def load_settings(path: str | Path | None) -> ImportSettings:
    """Load and validate settings from a config file.

    Raises:
        ConfigError: file path missing/unreadable, a required key missing,
            or a value invalid
    """
    if not path:
        raise ConfigError("Missing config file path!")
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        settings = ImportSettings(_env_file=config_path, _env_file_encoding="utf-8")
    except ValidationError as e:
        raise _config_error(e) from e

    # malformed namespace lists fail at startup, not inside a run
    parse_namespaces(settings.DATABASES)
    return settings


def _config_error(e: ValidationError) -> ConfigError:
    for err in e.errors():
        key = ".".join(str(part) for part in err["loc"])
        if err["type"] == "missing" or (
            key in REQUIRED_KEYS and err["type"] == "string_too_short"
        ):
            return ConfigError(f"Missing config property: {key}")
    err = e.errors()[0]
    key = ".".join(str(part) for part in err["loc"])
    return ConfigError(f"Invalid config property {key}: {err['msg']}")
