"""Collaborator interfaces consumed by the timer engine.

The engine talks to the outside world only through these narrow ports. The
in-process adapters here cover embedding and testing; SQLite-backed
implementations live in ``pomolog.storage``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pomolog.core.config import TimerConfig

if TYPE_CHECKING:
    from pomolog.focus.session import SessionPhase, TimerSession
    from pomolog.storage.snapshot import Snapshot

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionCompletionSink(Protocol):
    """Receives every finalized session exactly once."""

    def record(self, session: TimerSession) -> None: ...


@runtime_checkable
class ConfigurationProvider(Protocol):
    """Supplies and persists the user's timer configuration."""

    def get(self) -> TimerConfig: ...

    def save(self, config: TimerConfig) -> None: ...


@runtime_checkable
class SnapshotStore(Protocol):
    """Durable home of the engine snapshot."""

    async def load(self) -> Snapshot | None: ...

    async def save(self, snapshot: Snapshot) -> None: ...


@runtime_checkable
class NotificationPort(Protocol):
    """Fire-and-forget phase transition notifications."""

    def on_phase_transition(self, phase: SessionPhase) -> None: ...


class StaticConfigProvider:
    """Keeps the configuration in memory."""

    def __init__(self, config: TimerConfig | None = None):
        self._config = config or TimerConfig()

    def get(self) -> TimerConfig:
        return self._config

    def save(self, config: TimerConfig) -> None:
        self._config = config


class MemorySessionSink:
    """Collects finalized sessions in a list."""

    def __init__(self) -> None:
        self.sessions: list[TimerSession] = []

    def record(self, session: TimerSession) -> None:
        self.sessions.append(session)

    def __len__(self) -> int:
        return len(self.sessions)


class LoggingNotifier:
    """Notification port that only writes to the log."""

    def on_phase_transition(self, phase: SessionPhase) -> None:
        logger.info(f"Phase transition: {phase.value}")
