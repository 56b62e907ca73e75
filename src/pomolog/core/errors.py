"""Error taxonomy shared by the timer engine and its collaborators."""

from __future__ import annotations


class PomologError(Exception):
    """Base class for all pomolog errors."""


class ConfigError(PomologError, ValueError):
    """A configuration value is outside its allowed range."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class DurationError(PomologError, ValueError):
    """A custom or adjustment duration is invalid."""


class InvalidTransitionError(PomologError):
    """An operation was attempted from a state that does not support it.

    Raised when the host skipped the ``can_*`` guards. Carries the state the
    engine was in and the transition that was attempted.
    """

    def __init__(self, state: str, transition: str, message: str | None = None):
        self.state = state
        self.transition = transition
        super().__init__(message or f"Cannot {transition} while {state}")


class AlreadyRunningError(InvalidTransitionError):
    """``start`` was called while a session is already active."""

    def __init__(self, state: str):
        super().__init__(state, "start", f"A session is already active ({state}); stop or reset it first")


class IntegrityError(PomologError):
    """A loaded session or snapshot failed structural validation."""
