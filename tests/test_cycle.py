from datetime import timedelta

import pytest

from pomolog.core.config import TimerConfig
from pomolog.core.errors import AlreadyRunningError, InvalidTransitionError
from pomolog.focus.cycle import (
    CycleStatistics,
    cycle_duration_seconds,
    cycle_progress,
    daily_goal_progress,
    estimated_cycle_completion,
    is_long_break_time,
    next_phase,
    sessions_until_long_break,
)
from pomolog.focus.session import SessionPhase, create_session
from pomolog.focus.state_machine import TimerStatus


def run_through(engine, clock, phase=None):
    """Start a session and let it run to its target."""
    session = engine.start(phase, clock())
    clock.advance(session.target_seconds)
    engine.recompute(clock())
    return session


def test_next_phase_rules():
    config = TimerConfig()
    assert next_phase(0, SessionPhase.WORK, config) is SessionPhase.SHORT_BREAK
    assert next_phase(3, SessionPhase.WORK, config) is SessionPhase.SHORT_BREAK
    assert next_phase(4, SessionPhase.WORK, config) is SessionPhase.LONG_BREAK
    assert next_phase(8, SessionPhase.WORK, config) is SessionPhase.LONG_BREAK
    assert next_phase(4, SessionPhase.SHORT_BREAK, config) is SessionPhase.WORK
    assert next_phase(4, SessionPhase.LONG_BREAK, config) is SessionPhase.WORK


def test_cycle_helpers():
    assert not is_long_break_time(0, 4)
    assert is_long_break_time(4, 4)
    assert cycle_progress(0, 4) == 0.0
    assert cycle_progress(2, 4) == 50.0
    assert cycle_progress(4, 4) == 100.0
    assert sessions_until_long_break(0, 4) == 4
    assert sessions_until_long_break(1, 4) == 3
    assert sessions_until_long_break(4, 4) == 0
    assert daily_goal_progress(4, 8) == 50.0
    assert daily_goal_progress(10, 8) == 100.0


def test_cycle_duration_and_estimate(clock):
    config = TimerConfig()
    now = clock()

    assert cycle_duration_seconds(config) == 130 * 60
    first_work = estimated_cycle_completion(1, SessionPhase.WORK, 0, config, now)
    assert first_work == now + timedelta(seconds=cycle_duration_seconds(config))
    last_work = estimated_cycle_completion(4, SessionPhase.WORK, 600, config, now)
    assert last_work == now + timedelta(seconds=900 + 900)
    first_break = estimated_cycle_completion(1, SessionPhase.SHORT_BREAK, 0, config, now)
    assert first_break == now + timedelta(seconds=300 + 3 * 1500 + 2 * 300 + 900)
    long_break = estimated_cycle_completion(4, SessionPhase.LONG_BREAK, 0, config, now)
    assert long_break == now + timedelta(seconds=900)


def test_four_work_sessions_earn_a_long_break(make_engine, clock, sink):
    engine = make_engine()

    for expected_break in [SessionPhase.SHORT_BREAK] * 3:
        run_through(engine, clock)
        assert engine.current_phase is expected_break
        run_through(engine, clock)
        assert engine.current_phase is SessionPhase.WORK

    run_through(engine, clock)

    assert engine.current_phase is SessionPhase.LONG_BREAK
    assert engine.current_cycle_index == 4
    assert engine.completed_cycle_count == 4
    assert len(sink) == 7

    run_through(engine, clock)
    assert engine.current_phase is SessionPhase.WORK
    assert engine.next_phase is SessionPhase.SHORT_BREAK


def test_work_session_numbers_follow_cycle_index(make_engine, clock):
    engine = make_engine()

    first = run_through(engine, clock)
    run_through(engine, clock)
    second = run_through(engine, clock)

    assert (first.cycle_number, second.cycle_number) == (1, 2)


def test_next_phase_preview(make_engine, clock):
    engine = make_engine(long_break_interval=2)
    assert engine.next_phase is SessionPhase.SHORT_BREAK

    run_through(engine, clock)
    run_through(engine, clock)

    # The scheduled second work session will earn the long break
    assert engine.current_phase is SessionPhase.WORK
    assert engine.next_phase is SessionPhase.LONG_BREAK


def test_stopping_work_early_does_not_count(make_engine, clock):
    engine = make_engine()
    engine.start(SessionPhase.WORK, clock())
    clock.advance(minutes=10)

    engine.stop(clock())

    assert engine.current_cycle_index == 1
    assert engine.completed_cycle_count == 0
    assert engine.current_phase is SessionPhase.SHORT_BREAK
    assert engine.statistics.completed_sessions == 0
    assert engine.statistics.total_sessions == 1


def test_skipping_breaks_disabled_by_default(make_engine, clock):
    engine = make_engine()
    run_through(engine, clock)

    assert not engine.can_skip()
    with pytest.raises(InvalidTransitionError):
        engine.skip(clock())
    assert engine.current_phase is SessionPhase.SHORT_BREAK


def test_skip_scheduled_break(make_engine, clock, sink):
    engine = make_engine(allow_skip_breaks=True)
    run_through(engine, clock)

    skipped = engine.skip(clock())

    assert skipped.phase is SessionPhase.SHORT_BREAK
    assert not skipped.completed
    assert skipped.duration_seconds == 0
    assert sink.sessions[-1] is skipped
    assert engine.current_phase is SessionPhase.WORK
    assert engine.current_cycle_index == 1
    assert engine.statistics.skipped_sessions == 1


def test_skip_idle_work_advances_cycle(make_engine, clock, sink):
    engine = make_engine()

    skipped = engine.skip(clock())

    assert skipped.phase is SessionPhase.WORK
    assert skipped.cycle_number == 1
    assert engine.current_cycle_index == 1
    assert engine.completed_cycle_count == 0
    assert engine.current_phase is SessionPhase.SHORT_BREAK
    assert len(sink) == 1


def test_skip_active_work_auto_starts_break(make_engine, clock, sink):
    engine = make_engine(auto_start_breaks=True)
    engine.start(SessionPhase.WORK, clock())
    clock.advance(60)

    skipped = engine.skip(clock())

    assert not skipped.completed
    assert engine.status is TimerStatus.RUNNING
    assert engine.session.phase is SessionPhase.SHORT_BREAK
    assert engine.session.start_time == clock()
    assert sink.sessions == [skipped]


def test_focus_sessions_stay_outside_the_cycle(make_engine, clock):
    engine = make_engine()

    session = run_through(engine, clock, SessionPhase.FOCUS)

    assert session.target_seconds == 50 * 60
    assert engine.current_cycle_index == 0
    assert engine.completed_cycle_count == 0
    assert engine.current_phase is SessionPhase.WORK
    assert engine.statistics.total_focus_seconds == 50 * 60

    engine.start(SessionPhase.FOCUS, clock())
    with pytest.raises(InvalidTransitionError):
        engine.skip(clock())


def test_auto_start_breaks_only(make_engine, clock):
    engine = make_engine(auto_start_breaks=True, auto_start_work=False)

    run_through(engine, clock)
    assert engine.status is TimerStatus.RUNNING
    assert engine.session.phase is SessionPhase.SHORT_BREAK

    clock.advance(minutes=5)
    engine.recompute(clock())
    assert engine.status is TimerStatus.IDLE
    assert engine.current_phase is SessionPhase.WORK


def test_auto_start_work_after_break(make_engine, clock):
    engine = make_engine(auto_start_work=True)
    run_through(engine, clock)
    assert engine.status is TimerStatus.IDLE

    run_through(engine, clock)

    assert engine.status is TimerStatus.RUNNING
    assert engine.session.phase is SessionPhase.WORK
    assert engine.current_cycle_index == 2


def test_strict_mode_only_allows_scheduled_phase(make_engine, clock):
    engine = make_engine(strict_mode=True)

    with pytest.raises(InvalidTransitionError):
        engine.start(SessionPhase.SHORT_BREAK, clock())

    engine.start(SessionPhase.FOCUS, clock())
    engine.stop(clock())
    engine.start(SessionPhase.WORK, clock())
    assert engine.status is TimerStatus.RUNNING


def test_strict_mode_start_while_running_reports_already_running(make_engine, clock):
    engine = make_engine(strict_mode=True)
    engine.start(SessionPhase.WORK, clock())

    with pytest.raises(AlreadyRunningError) as exc_info:
        engine.start(SessionPhase.SHORT_BREAK, clock())

    assert exc_info.value.state == "running"
    assert engine.session.phase is SessionPhase.WORK


def test_manual_phase_choice_without_strict_mode(make_engine, clock):
    engine = make_engine()

    engine.start(SessionPhase.LONG_BREAK, clock())

    assert engine.current_phase is SessionPhase.LONG_BREAK
    assert engine.current_cycle_index == 0


def test_daily_goal_progress_rolls_over(make_engine, clock):
    engine = make_engine()
    run_through(engine, clock)
    run_through(engine, clock, SessionPhase.WORK)

    today = engine.daily_progress(clock().date())
    assert today["completed"] == 2
    assert today["goal"] == 8
    assert today["percentage"] == 25.0
    assert today["remaining"] == 6

    assert engine.daily_progress(clock().date() + timedelta(days=1))["completed"] == 0

    clock.advance(minutes=24 * 60)
    run_through(engine, clock, SessionPhase.WORK)
    assert engine.daily_progress(clock().date())["completed"] == 1


def test_set_daily_goal_clamps(make_engine):
    engine = make_engine()

    assert engine.set_daily_goal(100) == 50
    assert engine.set_daily_goal(0) == 1
    assert engine.set_daily_goal(6) == 6


def test_reset_cycle_keeps_statistics(make_engine, clock):
    engine = make_engine()
    run_through(engine, clock)
    engine.start(SessionPhase.SHORT_BREAK, clock())

    engine.reset_cycle()

    assert engine.status is TimerStatus.IDLE
    assert engine.current_cycle_index == 0
    assert engine.completed_cycle_count == 0
    assert engine.current_phase is SessionPhase.WORK
    assert engine.next_phase is SessionPhase.SHORT_BREAK
    assert engine.statistics.total_sessions == 1

    engine.reset_statistics()
    assert engine.statistics.total_sessions == 0


def test_statistics_rates(clock):
    stats = CycleStatistics()
    work = create_session("work", TimerConfig(), clock())
    work.duration_seconds = 1500
    brk = create_session("short-break", TimerConfig(), clock())
    brk.duration_seconds = 300

    stats.record(work, completed_normally=True)
    stats.record(brk, completed_normally=True)
    stats.record_skip()

    assert stats.total_sessions == 3
    assert stats.completion_rate == 66.7
    assert stats.average_session_seconds == 900
    assert stats.to_dict()["total_break_seconds"] == 300
