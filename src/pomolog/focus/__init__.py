"""Timer engine: session state machine and Pomodoro cycle scheduling."""

from pomolog.focus.cycle import CycleScheduler, CycleState, CycleStatistics
from pomolog.focus.engine import FocusEngine
from pomolog.focus.ports import LoggingNotifier, MemorySessionSink, StaticConfigProvider
from pomolog.focus.session import SessionPhase, TimerSession, create_session
from pomolog.focus.state_machine import SessionStateMachine, TimerReading, TimerStatus

__all__ = [
    "FocusEngine",
    "SessionStateMachine",
    "TimerReading",
    "TimerStatus",
    "CycleScheduler",
    "CycleState",
    "CycleStatistics",
    "SessionPhase",
    "TimerSession",
    "create_session",
    "StaticConfigProvider",
    "MemorySessionSink",
    "LoggingNotifier",
]
