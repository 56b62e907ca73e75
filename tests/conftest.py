from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from pomolog.core.config import EngineSettings, Settings, TimerConfig
from pomolog.focus.engine import FocusEngine
from pomolog.focus.ports import MemorySessionSink, StaticConfigProvider
from pomolog.focus.session import SessionPhase

START = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Manually advanced clock; call it to read the current time."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.phases: list[SessionPhase] = []

    def on_phase_transition(self, phase: SessionPhase) -> None:
        self.phases.append(phase)


class MemorySnapshotStore:
    def __init__(self, snapshot=None, error: Exception | None = None):
        self.snapshot = snapshot
        self.error = error
        self.saves = 0

    async def load(self):
        if self.error is not None:
            raise self.error
        return self.snapshot

    async def save(self, snapshot) -> None:
        self.snapshot = snapshot
        self.saves += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> TimerConfig:
    return TimerConfig()


@pytest.fixture
def provider(config: TimerConfig) -> StaticConfigProvider:
    return StaticConfigProvider(config)


@pytest.fixture
def sink() -> MemorySessionSink:
    return MemorySessionSink()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_engine(sink: MemorySessionSink, notifier: RecordingNotifier):
    """Engine factory taking TimerConfig overrides."""

    def factory(**overrides) -> FocusEngine:
        return FocusEngine(
            StaticConfigProvider(TimerConfig(**overrides)),
            sink=sink,
            notifier=notifier,
        )

    return factory


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        config_dir=tmp_path / "config",
        engine=EngineSettings(tick_interval_seconds=0.01, flush_interval_seconds=1),
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "pomolog.db"
