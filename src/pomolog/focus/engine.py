"""Host-owned timer engine: state machine + cycle scheduler behind one handle."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from pomolog.core.config import TimerConfig
from pomolog.core.errors import InvalidTransitionError
from pomolog.focus.cycle import CycleScheduler, CycleState, CycleStatistics
from pomolog.focus.ports import ConfigurationProvider, NotificationPort, SessionCompletionSink
from pomolog.focus.session import SessionPhase, TimerSession
from pomolog.focus.state_machine import SessionStateMachine, TimerReading, TimerStatus

if TYPE_CHECKING:
    from pomolog.storage.snapshot import Snapshot

logger = logging.getLogger(__name__)


class FocusEngine:
    """Timer session and Pomodoro cycle engine.

    Every call takes the current time explicitly, so the engine never reads a
    clock of its own. Mutating calls notify mutation listeners (the
    persistence coordinator marks itself dirty); ``recompute`` only does so
    when it finishes a session.

    Usage:
        engine = FocusEngine(StaticConfigProvider(), sink=MemorySessionSink())
        engine.start(SessionPhase.WORK, now)
        engine.recompute(later)          # from the host's periodic callback
        engine.pause(later); engine.resume(even_later)
        engine.stop(end)
    """

    def __init__(
        self,
        config_provider: ConfigurationProvider,
        sink: SessionCompletionSink | None = None,
        notifier: NotificationPort | None = None,
        cycle_state: CycleState | None = None,
    ):
        self._config_provider = config_provider
        self._notifier = notifier
        self._mutation_listeners: list[Callable[[], None]] = []
        self._notify_tasks: set[asyncio.Task] = set()

        self.machine = SessionStateMachine(config_provider, sink)
        self.scheduler = CycleScheduler(
            self.machine,
            config_provider,
            sink=sink,
            state=cycle_state,
            on_transition=self._notify_transition,
            on_change=self._mutated,
        )

    # --- Wiring ----------------------------------------------------------
    def add_mutation_listener(self, listener: Callable[[], None]) -> None:
        self._mutation_listeners.append(listener)

    def remove_mutation_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._mutation_listeners:
            self._mutation_listeners.remove(listener)

    # --- Upward interface: transitions -----------------------------------
    def start(
        self,
        phase: SessionPhase | str | None,
        now: datetime,
        project_ref: str | None = None,
        description: str | None = None,
        custom_minutes: float | None = None,
        tags: list[str] | None = None,
    ) -> TimerSession:
        """Start ``phase``, or the scheduled phase when omitted."""
        with self._guarded():
            return self.scheduler.start_phase(
                phase,
                now,
                project_ref=project_ref,
                description=description,
                custom_minutes=custom_minutes,
                tags=tags,
            )

    def pause(self, now: datetime) -> None:
        with self._guarded():
            self.machine.pause(now)
        self._mutated()

    def resume(self, now: datetime) -> None:
        with self._guarded():
            self.machine.resume(now)
        self._mutated()

    def stop(self, now: datetime) -> TimerSession | None:
        """Finish the live session; a no-op when idle."""
        finished = self.machine.stop(now)
        if finished is not None:
            self._mutated()
        return finished

    def reset(self) -> TimerSession | None:
        """Discard the live session without recording it."""
        discarded = self.machine.reset()
        self._mutated()
        return discarded

    def extend_target(self, minutes: float) -> int:
        with self._guarded():
            target = self.machine.extend_target(minutes)
        self._mutated()
        return target

    def skip(self, now: datetime) -> TimerSession:
        with self._guarded():
            return self.scheduler.skip(now)

    def recompute(self, now: datetime) -> TimerReading:
        """Periodic callback: refresh elapsed/remaining from absolute timestamps."""
        return self.machine.recompute(now)

    def resume_from_suspension(self, now: datetime) -> TimerReading:
        """Catch up after the host stopped calling back; one recompute suffices."""
        logger.debug("Host resumed from suspension; recomputing")
        return self.machine.recompute(now)

    # --- Configuration and cycle management -------------------------------
    @property
    def config(self) -> TimerConfig:
        return self._config_provider.get()

    def update_config(self, **changes: Any) -> TimerConfig:
        """Validate and persist configuration changes (raises ConfigError)."""
        config = self.config.updated(**changes)
        self._config_provider.save(config)
        self.scheduler.refresh_preview()
        self._mutated()
        logger.info(f"Configuration updated: {', '.join(sorted(changes))}")
        return config

    def set_daily_goal(self, goal: int) -> int:
        return self.scheduler.set_daily_goal(goal)

    def reset_cycle(self) -> None:
        """Discard any live session and restart the cycle from the first work phase."""
        self.machine.reset()
        self.scheduler.reset_cycle()

    def reset_statistics(self) -> None:
        self.scheduler.reset_statistics()

    # --- Projections ------------------------------------------------------
    @property
    def status(self) -> TimerStatus:
        return self.machine.status

    @property
    def session(self) -> TimerSession | None:
        return self.machine.session

    def reading(self) -> TimerReading:
        return self.machine.reading()

    @property
    def elapsed_seconds(self) -> int:
        return self.machine.reading().elapsed_seconds

    @property
    def remaining_seconds(self) -> int:
        return self.machine.reading().remaining_seconds

    @property
    def progress_percent(self) -> float:
        return self.machine.reading().progress_percent

    @property
    def current_cycle_index(self) -> int:
        return self.scheduler.state.current_cycle_index

    @property
    def completed_cycle_count(self) -> int:
        return self.scheduler.state.completed_cycle_count

    @property
    def current_phase(self) -> SessionPhase:
        """Phase of the live session, or the one the next start will begin."""
        session = self.machine.session
        if session is not None:
            return session.phase
        return self.scheduler.state.current_phase

    @property
    def next_phase(self) -> SessionPhase:
        return self.scheduler.state.next_phase

    @property
    def statistics(self) -> CycleStatistics:
        return self.scheduler.state.statistics

    @property
    def cycle_state(self) -> CycleState:
        return self.scheduler.state

    def daily_progress(self, today: date) -> dict[str, Any]:
        return self.scheduler.daily_progress(today)

    def can_start(self) -> bool:
        return self.machine.can_start()

    def can_pause(self) -> bool:
        return self.machine.can_pause()

    def can_resume(self) -> bool:
        return self.machine.can_resume()

    def can_stop(self) -> bool:
        return self.machine.can_stop()

    def can_skip(self) -> bool:
        phase = self.current_phase
        if phase is SessionPhase.FOCUS:
            return False
        return not phase.is_break or self.config.allow_skip_breaks

    def summary(self) -> dict[str, Any]:
        """Snapshot of the engine for display."""
        reading = self.machine.reading()
        return {
            "status": reading.status.value,
            "phase": self.current_phase.value,
            "next_phase": self.next_phase.value,
            "elapsed_seconds": reading.elapsed_seconds,
            "remaining": reading.remaining_display,
            "progress_percent": round(reading.progress_percent, 1),
            "is_overtime": reading.is_overtime,
            "current_cycle": self.current_cycle_index,
            "completed_cycles": self.completed_cycle_count,
            "statistics": self.statistics.to_dict(),
        }

    # --- Snapshots --------------------------------------------------------
    def snapshot(self) -> Snapshot:
        """Durable subset of engine state: configuration plus cycle counters."""
        from pomolog.storage.snapshot import Snapshot

        state = self.scheduler.state
        return Snapshot(
            config=self.config,
            current_cycle_index=state.current_cycle_index,
            completed_cycle_count=state.completed_cycle_count,
            current_phase=state.current_phase,
            daily_goal=state.daily_goal,
            completed_today=state.completed_today,
            last_session_date=state.last_session_date,
            statistics=state.statistics.to_dict(),
        )

    def restore(self, snapshot: Snapshot, apply_config: bool = True) -> None:
        """Load counters (and optionally configuration) from a snapshot.

        Any live session is discarded; in-progress session state is never
        part of a snapshot.
        """
        if apply_config:
            self._config_provider.save(snapshot.config)
        self.machine.reset()
        self.scheduler.state = snapshot.to_cycle_state()
        self.scheduler.refresh_preview()
        logger.info(
            f"Restored cycle state (cycle {snapshot.current_cycle_index}, "
            f"{snapshot.completed_cycle_count} completed)"
        )

    # --- Internal ---------------------------------------------------------
    @contextmanager
    def _guarded(self) -> Iterator[None]:
        """Log contract violations before they propagate."""
        try:
            yield
        except InvalidTransitionError as e:
            logger.warning(f"Invalid transition '{e.transition}' while {e.state}: {e}")
            raise

    def _mutated(self) -> None:
        for listener in list(self._mutation_listeners):
            listener()

    def _notify_transition(self, phase: SessionPhase) -> None:
        if self._notifier is None or not self.config.notifications_enabled:
            return
        try:
            result = self._notifier.on_phase_transition(phase)
            if asyncio.iscoroutine(result):
                self._fire_and_forget(result)
        except Exception as e:
            logger.error(f"Error in phase transition notification: {e}")

    def _fire_and_forget(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("Async notifier called without a running event loop; dropped")
            return
        task = loop.create_task(coro)
        self._notify_tasks.add(task)
        task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task) -> None:
        self._notify_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in phase transition notification: {error}")

