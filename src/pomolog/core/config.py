"""Configuration management with Pydantic and YAML support."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from pomolog.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config/pomolog/config.yaml"


def default_config_path() -> Path:
    """Config file location, honouring POMOLOG_CONFIG_DIR."""
    config_dir = os.environ.get("POMOLOG_CONFIG_DIR")
    if config_dir:
        return Path(config_dir).expanduser() / "config.yaml"
    return DEFAULT_CONFIG_PATH


def config_error_from(exc: ValidationError, subject: str = "timer configuration") -> ConfigError:
    """Translate a pydantic ValidationError into a ConfigError listing every bad field."""
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "value"
        errors.append(f"{location}: {err.get('msg', 'invalid value')}")
    return ConfigError(f"Invalid {subject}: " + "; ".join(errors), errors)


class TimerConfig(BaseModel):
    """User-editable timer configuration (durations in minutes)."""

    model_config = ConfigDict(extra="ignore")

    work_minutes: int = Field(default=25, ge=1, le=180)
    short_break_minutes: int = Field(default=5, ge=1, le=60)
    long_break_minutes: int = Field(default=15, ge=1, le=120)
    focus_minutes: int = Field(default=50, ge=1, le=180, description="Standalone focus session length")
    long_break_interval: int = Field(default=4, ge=2, le=10, description="Work sessions between long breaks")

    auto_start_breaks: bool = False
    auto_start_work: bool = False
    allow_skip_breaks: bool = False
    strict_mode: bool = Field(default=False, description="Only the scheduled phase may be started manually")

    allow_overtime: bool = True
    overtime_allowance_minutes: int = Field(default=30, ge=0, le=180)

    sound_enabled: bool = True
    notifications_enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimerConfig:
        """Validate a mapping, raising ConfigError instead of ValidationError."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise config_error_from(e) from e

    def updated(self, **changes: Any) -> TimerConfig:
        """Return a re-validated copy with ``changes`` applied."""
        unknown = sorted(set(changes) - set(type(self).model_fields))
        if unknown:
            raise ConfigError(f"Unknown configuration field(s): {', '.join(unknown)}")
        return type(self).from_dict({**self.model_dump(), **changes})


PRESETS: dict[str, dict[str, int]] = {
    "default": {"work_minutes": 25, "short_break_minutes": 5, "long_break_minutes": 15},
    "long_focus": {"work_minutes": 50, "short_break_minutes": 10, "long_break_minutes": 30},
    "ninety_minute": {"work_minutes": 90, "short_break_minutes": 15, "long_break_minutes": 30},
}


def apply_preset(config: TimerConfig, name: str) -> TimerConfig:
    """Apply one of the named duration presets to ``config``."""
    try:
        preset = PRESETS[name]
    except KeyError:
        raise ConfigError(f"Unknown preset '{name}' (choose from {', '.join(PRESETS)})") from None
    return config.updated(**preset)


class EngineSettings(BaseModel):
    """Timer engine tunables."""

    tick_interval_seconds: float = Field(default=0.1, gt=0, le=5, description="Recompute callback period")
    flush_interval_seconds: int = Field(default=30, ge=1, le=3600, description="Snapshot flush debounce")
    history_buffer_size: int = Field(default=20, ge=1, le=1000, description="Flush history when this full")


class Settings(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="POMOLOG_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/pomolog")
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".local/state/pomolog")
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".config/pomolog")

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    timer: TimerConfig = Field(default_factory=TimerConfig)
    engine: EngineSettings = Field(default_factory=EngineSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs and must lose to the environment
        return (env_settings, init_settings, file_secret_settings)

    @property
    def db_path(self) -> Path:
        """Path to SQLite database."""
        return self.data_dir / "pomolog.db"

    @property
    def config_file(self) -> Path:
        """Path to YAML config file."""
        return self.config_dir / "config.yaml"

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)

        os.chmod(self.data_dir, 0o700)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Settings:
        """Load settings from YAML file, environment variables, and defaults.

        Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values
        """
        config_path = config_path or default_config_path()

        yaml_config: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}

        try:
            return cls(**yaml_config)
        except ValidationError as e:
            raise config_error_from(e, f"settings in {config_path}") from e

    def save(self, config_path: Path | None = None) -> None:
        """Save current settings to YAML file."""
        config_path = config_path or self.config_file
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        # Paths are not YAML-native
        for key in ["data_dir", "log_dir", "config_dir"]:
            if key in data:
                data[key] = str(data[key])

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        os.chmod(config_path, 0o600)
        logger.debug(f"Settings saved to {config_path}")


class YamlConfigProvider:
    """Configuration Provider backed by the YAML settings file."""

    def __init__(self, settings: Settings, config_path: Path | None = None):
        self._settings = settings
        self._config_path = config_path or settings.config_file

    def get(self) -> TimerConfig:
        """Current timer configuration."""
        return self._settings.timer

    def save(self, config: TimerConfig) -> None:
        """Persist a new timer configuration."""
        # model_construct() skips field bounds
        config = TimerConfig.from_dict(config.model_dump())
        self._settings.timer = config
        self._settings.save(self._config_path)
        logger.info("Timer configuration saved")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.load()
