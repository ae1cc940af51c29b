"""Application configuration using pydantic-settings with YAML integration."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from releasewatch.core.exceptions import ConfigError
from releasewatch.core.logger import get_logger

logger = get_logger(__name__)

# Project root directory (releasewatch/core/config.py -> releasewatch/core -> releasewatch -> root)
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"

# Changing either list changes every fingerprint; run a backfill afterwards.
DEFAULT_STOP_WORDS: tuple[str, ...] = (
    "the", "a", "an", "and", "or", "for", "with", "by", "at", "in", "on",
    "to", "of", "new", "now", "available",
)
DEFAULT_BRAND_WORDS: tuple[str, ...] = (
    "disney", "universal", "seaworld", "orlando", "resort", "park", "parks",
    "world", "walt",
)


def _load_yaml(filename: str) -> dict[str, Any]:
    """Load a YAML file from the config directory.

    Args:
        filename: Name of the YAML file to load.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        ConfigError: If the file cannot be loaded or parsed.
    """
    filepath = CONFIG_DIR / filename
    try:
        with open(filepath, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data or {}
    except FileNotFoundError as e:
        raise ConfigError(
            f"Config file not found: {filepath}",
            {"file": filename},
        ) from e
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML: {filepath}",
            {"file": filename, "error": str(e)},
        ) from e


# ============================================================
# Sub-config models (from settings.yaml)
# ============================================================


class AppInfo(BaseModel):
    """Application metadata."""

    name: str = "releasewatch"
    version: str = "0.1.0"
    env: str = "development"


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///data/db/releasewatch.db"
    echo: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    file: str = "logs/ingest.log"
    max_title_length: int = 60


class RetryConfig(BaseModel):
    """Run-level retry configuration."""

    max_attempts: int = 3
    wait_exponential_min: int = 1
    wait_exponential_max: int = 30


class DedupConfig(BaseModel):
    """Duplicate resolver thresholds.

    The trigram and word-overlap thresholds default to the same value
    but are tuned independently.
    """

    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    word_overlap_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    review_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    sweep_same_source_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    sweep_cross_source_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    placeholder_marker: str = "placeholder"


class NormalizerConfig(BaseModel):
    """Vocabulary stripped from titles before comparison."""

    stop_words: list[str] = Field(default_factory=lambda: list(DEFAULT_STOP_WORDS))
    brand_words: list[str] = Field(default_factory=lambda: list(DEFAULT_BRAND_WORDS))

    @field_validator("stop_words", "brand_words")
    @classmethod
    def _lowercase_words(cls, words: list[str]) -> list[str]:
        return [w.strip().lower() for w in words if w.strip()]


class LockConfig(BaseModel):
    """Ingestion lock configuration."""

    default_lock_name: str = "feed_processing"
    ttl_minutes: int = Field(default=30, gt=0)

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)


class ScheduleConfig(BaseModel):
    """Periodic ingestion schedule."""

    timezone: str = "America/New_York"
    ingest_interval_minutes: int = 30
    misfire_grace_sec: int = 300


# ============================================================
# Root configuration
# ============================================================


class AppConfig(BaseSettings):
    """Root application configuration.

    Loads overrides from the environment / .env file and structured
    settings from ``config/settings.yaml``.
    """

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Environment variables (from .env) ---
    database_url: str = ""
    app_env: str = "development"
    log_level: str = ""

    # --- YAML-loaded sub-configs ---
    app: AppInfo = Field(default_factory=AppInfo)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    normalizer: NormalizerConfig = Field(default_factory=NormalizerConfig)
    locking: LockConfig = Field(default_factory=LockConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    def model_post_init(self, __context: Any) -> None:
        """Load YAML configuration after env vars are initialized."""
        self._load_yaml_configs()

    def _load_yaml_configs(self) -> None:
        """Load settings.yaml into the sub-config models."""
        settings = _load_yaml("settings.yaml")
        if "app" in settings:
            self.app = AppInfo(**settings["app"])
        if "database" in settings:
            self.database = DatabaseConfig(**settings["database"])
        if "logging" in settings:
            self.logging = LoggingConfig(**settings["logging"])
        if "retry" in settings:
            self.retry = RetryConfig(**settings["retry"])
        if "dedup" in settings:
            self.dedup = DedupConfig(**settings["dedup"])
        if "normalizer" in settings:
            self.normalizer = NormalizerConfig(**settings["normalizer"])
        if "locking" in settings:
            self.locking = LockConfig(**settings["locking"])
        if "schedule" in settings:
            self.schedule = ScheduleConfig(**settings["schedule"])

        # Env vars win over YAML
        if self.log_level:
            self.logging.level = self.log_level


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get the singleton application configuration.

    Returns:
        The AppConfig singleton instance.

    Note:
        Call ``get_config.cache_clear()`` to reload configuration in tests.
    """
    config = AppConfig()
    logger.info(
        "configuration_loaded",
        app=config.app.name,
        env=config.app.env,
    )
    return config
