"""Per-session timer state machine: idle -> running <-> paused -> completed -> idle."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import ClassVar, Union

from pomolog.core.errors import AlreadyRunningError, DurationError, InvalidTransitionError
from pomolog.focus import timekeeping
from pomolog.focus.ports import ConfigurationProvider, SessionCompletionSink
from pomolog.focus.session import (
    ADJUSTMENT_LIMITS,
    MAX_TARGET_SECONDS,
    MIN_TARGET_SECONDS,
    SessionPhase,
    TimerSession,
    create_session,
)

logger = logging.getLogger(__name__)


class TimerStatus(str, Enum):
    """Coarse status of the state machine."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Idle:
    status: ClassVar[TimerStatus] = TimerStatus.IDLE


@dataclass(frozen=True)
class Running:
    session: TimerSession
    status: ClassVar[TimerStatus] = TimerStatus.RUNNING


@dataclass(frozen=True)
class Paused:
    session: TimerSession
    paused_at: datetime
    elapsed_seconds: int
    status: ClassVar[TimerStatus] = TimerStatus.PAUSED


@dataclass(frozen=True)
class Completed:
    session: TimerSession
    completed_normally: bool
    status: ClassVar[TimerStatus] = TimerStatus.COMPLETED


TimerState = Union[Idle, Running, Paused, Completed]

# Called with (finished session, completed_normally) once the machine is idle again
FinishListener = Callable[[TimerSession, bool], None]


@dataclass(frozen=True)
class TimerReading:
    """Read-only projection of the timer at the last recompute."""

    status: TimerStatus
    phase: SessionPhase | None = None
    elapsed_seconds: int = 0
    remaining_seconds: int = 0
    target_seconds: int = 0
    progress_percent: float = 0.0
    is_overtime: bool = False
    overtime_seconds: int = 0
    overtime_exceeded: bool = False

    @property
    def remaining_display(self) -> str:
        """Format time remaining as MM:SS."""
        return timekeeping.format_time(self.remaining_seconds)

    @property
    def elapsed_display(self) -> str:
        return timekeeping.format_time(self.elapsed_seconds)


class SessionStateMachine:
    """Owns the live session and its pause/resume time accounting.

    Elapsed time is always recomputed from the session's absolute start
    timestamp, never accumulated tick by tick, so any number of missed
    callbacks is harmless. Resuming shifts the start timestamp forward by the
    paused span.

    Usage:
        fsm = SessionStateMachine(StaticConfigProvider(), sink)
        fsm.start(SessionPhase.WORK, now)
        fsm.recompute(now + timedelta(seconds=10))
        fsm.pause(now + timedelta(seconds=10))
        fsm.resume(now + timedelta(seconds=50))
        fsm.stop(now + timedelta(seconds=70))   # duration == 30
    """

    def __init__(
        self,
        config_provider: ConfigurationProvider,
        sink: SessionCompletionSink | None = None,
        on_finished: FinishListener | None = None,
    ):
        self._config_provider = config_provider
        self._sink = sink
        self.on_finished = on_finished

        self._state: TimerState = Idle()
        self._elapsed = 0
        self._last_completed: TimerSession | None = None

    # --- Projections -----------------------------------------------------
    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def status(self) -> TimerStatus:
        return self._state.status

    @property
    def session(self) -> TimerSession | None:
        """The live session, if any."""
        if isinstance(self._state, (Running, Paused)):
            return self._state.session
        return None

    @property
    def last_completed(self) -> TimerSession | None:
        return self._last_completed

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed

    def can_start(self) -> bool:
        return isinstance(self._state, Idle)

    def can_pause(self) -> bool:
        return isinstance(self._state, Running)

    def can_resume(self) -> bool:
        return isinstance(self._state, Paused)

    def can_stop(self) -> bool:
        return isinstance(self._state, (Running, Paused))

    def reading(self) -> TimerReading:
        """Projection based on the last computed elapsed value."""
        session = self.session
        if session is None:
            return TimerReading(status=self.status)

        config = self._config_provider.get()
        elapsed = self._elapsed
        target = session.target_seconds
        overtime = timekeeping.is_overtime(elapsed, target)
        if config.allow_overtime:
            exceeded = timekeeping.exceeds_overtime_allowance(
                elapsed, target, config.overtime_allowance_minutes
            )
        else:
            exceeded = overtime

        return TimerReading(
            status=self.status,
            phase=session.phase,
            elapsed_seconds=elapsed,
            remaining_seconds=timekeeping.remaining_seconds(elapsed, target),
            target_seconds=target,
            progress_percent=timekeeping.progress_percent(elapsed, target),
            is_overtime=overtime,
            overtime_seconds=timekeeping.overtime_seconds(elapsed, target),
            overtime_exceeded=exceeded,
        )

    # --- Transitions -----------------------------------------------------
    def start(
        self,
        phase: SessionPhase | str,
        now: datetime,
        project_ref: str | None = None,
        description: str | None = None,
        custom_minutes: float | None = None,
        tags: list[str] | None = None,
        cycle_number: int = 0,
    ) -> TimerSession:
        """Idle -> Running with a freshly created session."""
        if not isinstance(self._state, Idle):
            raise AlreadyRunningError(self.status.value)

        session = create_session(
            phase,
            self._config_provider.get(),
            started_at=now,
            project_ref=project_ref,
            description=description,
            custom_minutes=custom_minutes,
            tags=tags,
            cycle_number=cycle_number,
        )
        self._state = Running(session)
        self._elapsed = 0

        logger.info(f"Session started: {session.phase.value} ({session.target_seconds}s target)")
        return session

    def recompute(self, now: datetime) -> TimerReading:
        """Refresh elapsed/remaining from the absolute start timestamp.

        No-op outside Running. Idempotent for a given ``now`` and free of I/O
        unless the session reaches its target, in which case it completes.
        """
        state = self._state
        if isinstance(state, Running):
            session = state.session
            self._elapsed = timekeeping.elapsed_seconds(session.start_time, now)
            target = session.target_seconds
            if target > 0 and timekeeping.remaining_seconds(self._elapsed, target) == 0:
                self.complete(now)
        return self.reading()

    def pause(self, now: datetime) -> None:
        """Running -> Paused, freezing elapsed time at ``now``."""
        state = self._state
        if not isinstance(state, Running):
            raise InvalidTransitionError(self.status.value, "pause")

        session = state.session
        self._elapsed = timekeeping.elapsed_seconds(session.start_time, now)
        session.paused = True
        self._state = Paused(session=session, paused_at=now, elapsed_seconds=self._elapsed)
        logger.info(f"Session paused at {self._elapsed}s")

    def resume(self, now: datetime) -> None:
        """Paused -> Running, excluding the paused span from future elapsed values."""
        state = self._state
        if not isinstance(state, Paused):
            raise InvalidTransitionError(self.status.value, "resume")

        session = state.session
        paused_for = max(timedelta(0), now - state.paused_at)
        session.start_time = session.start_time + paused_for
        session.paused = False
        self._state = Running(session)
        self._elapsed = state.elapsed_seconds
        logger.info(f"Session resumed after {int(paused_for.total_seconds())}s paused")

    def extend_target(self, delta_minutes: float) -> int:
        """Add (or remove) minutes from the live session's target.

        Elapsed time is untouched, so remaining changes immediately. The new
        target never drops below one minute. Returns the new target in seconds.
        """
        state = self._state
        if not isinstance(state, (Running, Paused)):
            raise InvalidTransitionError(self.status.value, "extend_target")

        low, high = ADJUSTMENT_LIMITS
        if not timekeeping.validate_time_input(delta_minutes, low, high):
            raise DurationError(f"Adjustment must be between {low} and {high} minutes")

        session = state.session
        new_target = max(MIN_TARGET_SECONDS, session.target_seconds + timekeeping.minutes_to_seconds(delta_minutes))
        if new_target > MAX_TARGET_SECONDS:
            raise DurationError(f"Target cannot exceed {MAX_TARGET_SECONDS // 3600} hours")

        session.target_seconds = new_target
        logger.info(f"Session target adjusted by {delta_minutes:+g}m to {new_target}s")
        return new_target

    def complete(self, now: datetime) -> TimerSession:
        """Finish the live session as having run its course."""
        if not isinstance(self._state, (Running, Paused)):
            raise InvalidTransitionError(self.status.value, "complete")
        return self._finish(now, completed_normally=True)

    def stop(self, now: datetime) -> TimerSession | None:
        """Finish the live session on request.

        Safe from Running or Paused, a no-op from Idle. The session counts as
        completed normally only if it had reached its target.
        """
        state = self._state
        if not isinstance(state, (Running, Paused)):
            return None

        if isinstance(state, Running):
            elapsed = timekeeping.elapsed_seconds(state.session.start_time, now)
        else:
            elapsed = state.elapsed_seconds
        return self._finish(now, completed_normally=elapsed >= state.session.target_seconds)

    def reset(self) -> TimerSession | None:
        """Any state -> Idle, discarding the live session without a record."""
        discarded = self.session
        self._state = Idle()
        self._elapsed = 0
        if discarded is not None:
            logger.info(f"Session discarded: {discarded.phase.value}")
        return discarded

    # --- Internal --------------------------------------------------------
    def _finish(self, now: datetime, completed_normally: bool) -> TimerSession:
        state = self._state
        if not isinstance(state, (Running, Paused)):
            raise InvalidTransitionError(self.status.value, "finish")
        session = state.session

        if isinstance(state, Running):
            elapsed = timekeeping.elapsed_seconds(session.start_time, now)
        else:
            elapsed = state.elapsed_seconds

        session.end_time = max(now, session.start_time)
        session.duration_seconds = elapsed
        session.completed = True
        session.paused = False

        self._state = Completed(session=session, completed_normally=completed_normally)
        self._elapsed = elapsed
        self._last_completed = session

        logger.info(
            f"Session finished: {session.phase.value} after {elapsed}s "
            f"({'completed' if completed_normally else 'stopped early'})"
        )

        if self._sink is not None:
            try:
                self._sink.record(session)
            except Exception as e:
                logger.error(f"Error recording finished session {session.id}: {e}")

        # Completed is terminal for this session; accept the next start
        self._state = Idle()
        self._elapsed = 0

        if self.on_finished is not None:
            self.on_finished(session, completed_normally)

        return session
