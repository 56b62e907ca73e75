"""Core components: configuration, errors and the timer host."""

from pomolog.core.config import Settings, TimerConfig, get_settings
from pomolog.core.errors import (
    AlreadyRunningError,
    ConfigError,
    DurationError,
    IntegrityError,
    InvalidTransitionError,
    PomologError,
)

__all__ = [
    "Settings",
    "TimerConfig",
    "get_settings",
    "PomologError",
    "ConfigError",
    "DurationError",
    "InvalidTransitionError",
    "AlreadyRunningError",
    "IntegrityError",
]
