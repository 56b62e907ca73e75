from datetime import datetime, timedelta

import pytest

from pomolog.core.config import TimerConfig
from pomolog.core.errors import ConfigError, DurationError, IntegrityError
from pomolog.focus.session import (
    SessionPhase,
    TimerSession,
    create_session,
    productivity_score,
    session_from_payload,
    session_stats,
    validate_session,
)

T0 = datetime(2026, 3, 2, 9, 0, 0)


def test_phase_parse_accepts_underscores():
    assert SessionPhase.parse("short_break") is SessionPhase.SHORT_BREAK
    assert SessionPhase.parse("LONG-BREAK") is SessionPhase.LONG_BREAK
    with pytest.raises(ConfigError):
        SessionPhase.parse("nap")


def test_phase_kinds():
    assert SessionPhase.SHORT_BREAK.is_break
    assert not SessionPhase.WORK.is_break
    assert not SessionPhase.FOCUS.is_pomodoro


def test_create_session_uses_configured_length():
    session = create_session(SessionPhase.WORK, TimerConfig(), T0)

    assert session.target_seconds == 25 * 60
    assert session.start_time == T0
    assert session.end_time is None
    assert session.duration_seconds == 0
    assert not session.completed
    assert session.is_pomodoro


def test_create_session_custom_minutes_within_phase_range():
    session = create_session("long-break", TimerConfig(), T0, custom_minutes=120)
    assert session.target_seconds == 120 * 60

    with pytest.raises(DurationError):
        create_session("short-break", TimerConfig(), T0, custom_minutes=61)
    with pytest.raises(DurationError):
        create_session("work", TimerConfig(), T0, custom_minutes=0)


def test_create_session_normalizes_tags():
    session = create_session("focus", TimerConfig(), T0, tags=[" deep ", "deep", "", "writing"])
    assert session.tags == ["deep", "writing"]

    with pytest.raises(ValueError):
        create_session("focus", TimerConfig(), T0, tags=[f"t{i}" for i in range(11)])


def test_session_dict_round_trip():
    session = create_session("work", TimerConfig(), T0, project_ref="proj-1", tags=["a"], cycle_number=3)
    session.end_time = T0 + timedelta(minutes=25)
    session.duration_seconds = 1500
    session.completed = True

    restored = TimerSession.from_dict(session.to_dict())

    assert restored == session


def test_session_from_payload_rejects_malformed():
    with pytest.raises(IntegrityError):
        session_from_payload({"phase": "work"})
    with pytest.raises(IntegrityError):
        session_from_payload({"id": "x", "phase": "siesta", "start_time": T0.isoformat(), "target_seconds": 60})

    payload = create_session("work", TimerConfig(), T0).to_dict()
    payload["end_time"] = (T0 - timedelta(minutes=1)).isoformat()
    with pytest.raises(IntegrityError):
        session_from_payload(payload)


def test_validate_session_checks_target_bounds():
    session = create_session("work", TimerConfig(), T0)
    assert validate_session(session)

    session.target_seconds = 30
    assert not validate_session(session)
    assert not validate_session({"id": "not a session"})


def test_productivity_score():
    session = create_session("work", TimerConfig(), T0)
    assert productivity_score(session) == 0.0

    session.completed = True
    session.duration_seconds = 1500
    assert productivity_score(session) == 100.0

    session.duration_seconds = 750
    assert productivity_score(session) == 40.0

    session.duration_seconds = 3000
    assert productivity_score(session) == 50.0


def test_session_stats_for_running_session():
    session = create_session("work", TimerConfig(), T0)

    stats = session_stats(session, T0 + timedelta(minutes=10))

    assert stats["elapsed"] == 600
    assert stats["remaining"] == 900
    assert stats["progress"] == 40.0
    assert not stats["is_overtime"]
