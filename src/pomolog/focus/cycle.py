"""Pomodoro cycle scheduling: phase sequencing, auto-start and skip policy, statistics."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from pomolog.core.config import TimerConfig
from pomolog.core.errors import AlreadyRunningError, InvalidTransitionError
from pomolog.focus.ports import ConfigurationProvider, SessionCompletionSink
from pomolog.focus.session import SessionPhase, TimerSession, create_session, phase_duration_seconds
from pomolog.focus.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

DAILY_GOAL_LIMITS = (1, 50)


def is_long_break_time(current_cycle_index: int, long_break_interval: int) -> bool:
    """Whether the work session numbered ``current_cycle_index`` earns a long break."""
    return current_cycle_index > 0 and current_cycle_index % long_break_interval == 0


def next_phase(current_cycle_index: int, current_phase: SessionPhase, config: TimerConfig) -> SessionPhase:
    """Phase that follows ``current_phase``.

    Work is followed by a long break every ``long_break_interval``-th cycle and
    a short break otherwise; anything else is followed by work.
    """
    if current_phase is SessionPhase.WORK:
        if is_long_break_time(current_cycle_index, config.long_break_interval):
            return SessionPhase.LONG_BREAK
        return SessionPhase.SHORT_BREAK
    return SessionPhase.WORK


def daily_goal_progress(completed_work_sessions_today: int, daily_goal: int) -> float:
    """Percentage of the daily goal reached, clamped to 0-100."""
    if daily_goal <= 0:
        return 100.0
    return max(0.0, min(100.0, completed_work_sessions_today / daily_goal * 100))


def cycle_progress(current_cycle_index: int, long_break_interval: int) -> float:
    """Position within the current long-break cycle (0-100)."""
    if current_cycle_index <= 0:
        return 0.0
    position = current_cycle_index % long_break_interval or long_break_interval
    return position / long_break_interval * 100


def sessions_until_long_break(current_cycle_index: int, long_break_interval: int) -> int:
    """Work sessions still to start before the next long break."""
    if current_cycle_index <= 0:
        return long_break_interval
    return (long_break_interval - current_cycle_index % long_break_interval) % long_break_interval


def cycle_duration_seconds(config: TimerConfig) -> int:
    """Length of one full cycle: N work sessions, N-1 short breaks, one long break."""
    interval = config.long_break_interval
    minutes = (
        config.work_minutes * interval
        + config.short_break_minutes * (interval - 1)
        + config.long_break_minutes
    )
    return minutes * 60


def estimated_cycle_completion(
    current_cycle_index: int,
    current_phase: SessionPhase,
    elapsed_seconds: int,
    config: TimerConfig,
    now: datetime,
) -> datetime:
    """Estimate when the current cycle's long break will be over.

    ``current_cycle_index`` counts work sessions started, including the one
    in progress; a break follows the work session with that index.
    """
    interval = config.long_break_interval
    remaining = max(0, phase_duration_seconds(current_phase, config) - elapsed_seconds)
    works_left = (interval - current_cycle_index % interval) % interval
    work = config.work_minutes * 60
    short_break = config.short_break_minutes * 60
    long_break = config.long_break_minutes * 60

    if current_phase is SessionPhase.WORK:
        remaining += works_left * (short_break + work) + long_break
    elif current_phase is SessionPhase.SHORT_BREAK:
        remaining += works_left * work + max(0, works_left - 1) * short_break + long_break
    return now + timedelta(seconds=remaining)


@dataclass
class CycleStatistics:
    """Running totals over finished and skipped sessions."""

    total_sessions: int = 0
    completed_sessions: int = 0
    skipped_sessions: int = 0
    total_work_seconds: int = 0
    total_break_seconds: int = 0
    total_focus_seconds: int = 0

    @property
    def completion_rate(self) -> float:
        """Percentage of sessions that ran their course."""
        if self.total_sessions <= 0:
            return 0.0
        return round(self.completed_sessions / self.total_sessions * 100, 1)

    @property
    def average_session_seconds(self) -> int:
        if self.completed_sessions <= 0:
            return 0
        tracked = self.total_work_seconds + self.total_break_seconds + self.total_focus_seconds
        return round(tracked / self.completed_sessions)

    def record(self, session: TimerSession, completed_normally: bool) -> None:
        self.total_sessions += 1
        if completed_normally:
            self.completed_sessions += 1
        if session.phase is SessionPhase.WORK:
            self.total_work_seconds += session.duration_seconds
        elif session.phase.is_break:
            self.total_break_seconds += session.duration_seconds
        else:
            self.total_focus_seconds += session.duration_seconds

    def record_skip(self) -> None:
        self.total_sessions += 1
        self.skipped_sessions += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "completed_sessions": self.completed_sessions,
            "skipped_sessions": self.skipped_sessions,
            "total_work_seconds": self.total_work_seconds,
            "total_break_seconds": self.total_break_seconds,
            "total_focus_seconds": self.total_focus_seconds,
            "completion_rate": self.completion_rate,
            "average_session_seconds": self.average_session_seconds,
        }


@dataclass
class CycleState:
    """Cycle counters and the scheduled phase.

    ``current_cycle_index`` counts work phases started; ``completed_cycle_count``
    counts work phases that ran their course. While idle, ``current_phase`` is
    the phase the next ``start`` will begin.
    """

    current_cycle_index: int = 0
    completed_cycle_count: int = 0
    current_phase: SessionPhase = SessionPhase.WORK
    next_phase: SessionPhase = SessionPhase.SHORT_BREAK
    daily_goal: int = 8
    completed_today: int = 0
    last_session_date: date | None = None
    statistics: CycleStatistics = field(default_factory=CycleStatistics)


class CycleScheduler:
    """Sequences sessions on a state machine according to Pomodoro rules.

    Installs itself as the machine's finish listener so that every finished
    session updates the counters and may auto-start the following phase.
    """

    def __init__(
        self,
        machine: SessionStateMachine,
        config_provider: ConfigurationProvider,
        sink: SessionCompletionSink | None = None,
        state: CycleState | None = None,
        on_transition: Callable[[SessionPhase], None] | None = None,
        on_change: Callable[[], None] | None = None,
    ):
        self._machine = machine
        self._config_provider = config_provider
        self._sink = sink
        self.state = state or CycleState()
        self.on_transition = on_transition
        self.on_change = on_change

        machine.on_finished = self.on_phase_finished

    @property
    def config(self) -> TimerConfig:
        return self._config_provider.get()

    # --- Starting --------------------------------------------------------
    def start_phase(
        self,
        phase: SessionPhase | str | None,
        now: datetime,
        project_ref: str | None = None,
        description: str | None = None,
        custom_minutes: float | None = None,
        tags: list[str] | None = None,
    ) -> TimerSession:
        """Start ``phase`` (default: the scheduled phase) on the state machine.

        Starting work advances the cycle index before the session's outcome is
        known, which fixes the long-break cadence for the break that follows.
        """
        phase = self.state.current_phase if phase is None else SessionPhase.parse(phase)
        config = self.config

        if not self._machine.can_start():
            raise AlreadyRunningError(self._machine.status.value)
        if config.strict_mode and phase.is_pomodoro and phase is not self.state.current_phase:
            raise InvalidTransitionError(
                self._machine.status.value,
                f"start {phase.value}",
                f"Strict mode: the scheduled phase is {self.state.current_phase.value}",
            )

        index = self.state.current_cycle_index
        session = self._machine.start(
            phase,
            now,
            project_ref=project_ref,
            description=description,
            custom_minutes=custom_minutes,
            tags=tags,
            cycle_number=index + 1 if phase is SessionPhase.WORK else index,
        )

        self._roll_day(now.date())
        if phase is SessionPhase.WORK:
            self.state.current_cycle_index = index + 1
            self._set_phase(SessionPhase.WORK)
        elif phase.is_break:
            self._set_phase(phase)
        self._changed()
        return session

    # --- Finishing -------------------------------------------------------
    def on_phase_finished(self, session: TimerSession, completed_normally: bool) -> None:
        """Update counters for a finished session and apply the auto-start policy."""
        finished_at = session.end_time or session.start_time
        self._roll_day(finished_at.date())

        self.state.statistics.record(session, completed_normally)
        if session.phase is SessionPhase.WORK and completed_normally:
            self.state.completed_cycle_count += 1
            self.state.completed_today += 1
        self.state.last_session_date = finished_at.date()

        if session.phase is SessionPhase.FOCUS:
            self._changed()
            return

        upcoming = next_phase(self.state.current_cycle_index, session.phase, self.config)
        self._set_phase(upcoming)
        self._changed()
        logger.info(f"{session.phase.value} finished; next up: {upcoming.value}")

        if self._should_auto_start(session.phase):
            self.start_phase(upcoming, finished_at)

    def skip(self, now: datetime) -> TimerSession:
        """Abandon the current (or scheduled) phase and move to the next one.

        Work may always be skipped; breaks only when ``allow_skip_breaks`` is
        set. The skipped phase is recorded as an uncompleted zero-length entry.
        """
        active = self._machine.session
        phase = active.phase if active is not None else self.state.current_phase
        config = self.config

        if phase is SessionPhase.FOCUS:
            raise InvalidTransitionError(
                self._machine.status.value, "skip", "Focus sessions are outside the cycle; stop them instead"
            )
        if phase.is_break and not config.allow_skip_breaks:
            raise InvalidTransitionError(
                self._machine.status.value, f"skip {phase.value}", "Skipping breaks is disabled"
            )

        if active is not None:
            self._machine.reset()
            record = active
        else:
            if phase is SessionPhase.WORK:
                # The skipped work slot still counts towards the long-break cadence
                self.state.current_cycle_index += 1
            record = create_session(phase, config, now, cycle_number=self.state.current_cycle_index)

        record.end_time = max(now, record.start_time)
        record.duration_seconds = 0
        record.completed = False
        record.paused = False

        if self._sink is not None:
            try:
                self._sink.record(record)
            except Exception as e:
                logger.error(f"Error recording skipped session {record.id}: {e}")

        self._roll_day(now.date())
        self.state.statistics.record_skip()
        upcoming = next_phase(self.state.current_cycle_index, phase, config)
        self._set_phase(upcoming)
        self._changed()
        logger.info(f"Skipped {phase.value}; next up: {upcoming.value}")

        if active is not None and self._should_auto_start(phase):
            self.start_phase(upcoming, now)
        return record

    # --- Goals and resets ------------------------------------------------
    def daily_progress(self, today: date) -> dict[str, Any]:
        """Completed work sessions against the daily goal for ``today``."""
        completed = self.state.completed_today if self.state.last_session_date == today else 0
        goal = self.state.daily_goal
        return {
            "completed": completed,
            "goal": goal,
            "percentage": daily_goal_progress(completed, goal),
            "remaining": max(0, goal - completed),
        }

    def set_daily_goal(self, goal: int) -> int:
        low, high = DAILY_GOAL_LIMITS
        self.state.daily_goal = max(low, min(high, int(goal)))
        self._changed()
        return self.state.daily_goal

    def reset_cycle(self) -> None:
        """Return counters and scheduled phase to their initial values."""
        self.state.current_cycle_index = 0
        self.state.completed_cycle_count = 0
        self.state.current_phase = SessionPhase.WORK
        self.state.next_phase = SessionPhase.SHORT_BREAK
        self._changed()
        logger.info("Pomodoro cycle reset")

    def reset_statistics(self) -> None:
        self.state.statistics = CycleStatistics()
        self._changed()

    def refresh_preview(self) -> None:
        """Recompute the previewed next phase (after a config change)."""
        self.state.next_phase = self._preview(self.state.current_phase)

    # --- Internal --------------------------------------------------------
    def _should_auto_start(self, finished_phase: SessionPhase) -> bool:
        config = self.config
        if finished_phase is SessionPhase.WORK:
            return config.auto_start_breaks
        return config.auto_start_work

    def _preview(self, phase: SessionPhase) -> SessionPhase:
        # A scheduled work phase has not started yet, so its index is one ahead
        index = self.state.current_cycle_index
        if phase is SessionPhase.WORK and self._machine.session is None:
            index += 1
        return next_phase(index, phase, self.config)

    def _set_phase(self, phase: SessionPhase) -> None:
        changed = phase is not self.state.current_phase
        self.state.current_phase = phase
        self.state.next_phase = self._preview(phase)
        if changed and self.on_transition is not None:
            self.on_transition(phase)

    def _roll_day(self, today: date) -> None:
        if self.state.last_session_date is not None and self.state.last_session_date != today:
            self.state.completed_today = 0
            self.state.last_session_date = today

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()
