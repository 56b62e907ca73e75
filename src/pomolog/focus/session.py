"""Timer session records: factory, validation and serialization."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pomolog.core.config import TimerConfig
from pomolog.core.errors import ConfigError, DurationError, IntegrityError
from pomolog.focus import timekeeping

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """Kind of interval a session measures."""

    WORK = "work"
    SHORT_BREAK = "short-break"
    LONG_BREAK = "long-break"
    FOCUS = "focus"  # Standalone, outside the Pomodoro cycle

    @property
    def is_break(self) -> bool:
        return self in (SessionPhase.SHORT_BREAK, SessionPhase.LONG_BREAK)

    @property
    def is_pomodoro(self) -> bool:
        return self is not SessionPhase.FOCUS

    @classmethod
    def parse(cls, value: SessionPhase | str) -> SessionPhase:
        """Accept enum members, values, or underscore spellings ("short_break")."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("_", "-"))
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ConfigError(f"Unknown session phase '{value}' (expected one of: {valid})") from None


# Allowed minutes per phase (inclusive)
PHASE_LIMITS: dict[SessionPhase, tuple[int, int]] = {
    SessionPhase.WORK: (1, 180),
    SessionPhase.FOCUS: (1, 180),
    SessionPhase.SHORT_BREAK: (1, 60),
    SessionPhase.LONG_BREAK: (1, 120),
}

MIN_TARGET_SECONDS = 60
MAX_TARGET_SECONDS = 24 * 60 * 60
ADJUSTMENT_LIMITS = (-30, 60)  # minutes accepted by a single target adjustment
MAX_TAGS = 10
MAX_TAG_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 1000


def phase_minutes(phase: SessionPhase, config: TimerConfig) -> int:
    """Configured length of ``phase`` in minutes."""
    if phase is SessionPhase.WORK:
        return config.work_minutes
    if phase is SessionPhase.SHORT_BREAK:
        return config.short_break_minutes
    if phase is SessionPhase.LONG_BREAK:
        return config.long_break_minutes
    return config.focus_minutes


def phase_duration_seconds(phase: SessionPhase, config: TimerConfig) -> int:
    return timekeeping.minutes_to_seconds(phase_minutes(phase, config))


@dataclass
class TimerSession:
    """One focus or break interval.

    ``start_time`` is shifted forward on resume so that elapsed time computed
    from it excludes paused spans. Only the session state machine mutates a
    live session.
    """

    phase: SessionPhase
    start_time: datetime
    target_seconds: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    end_time: datetime | None = None
    duration_seconds: int = 0
    project_ref: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    completed: bool = False
    paused: bool = False
    cycle_number: int = 0

    @property
    def is_pomodoro(self) -> bool:
        return self.phase.is_pomodoro

    @property
    def target_minutes(self) -> float:
        return timekeeping.seconds_to_minutes(self.target_seconds)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "phase": self.phase.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "target_seconds": self.target_seconds,
            "duration_seconds": self.duration_seconds,
            "is_pomodoro": self.is_pomodoro,
            "project_ref": self.project_ref,
            "description": self.description,
            "tags": list(self.tags),
            "completed": self.completed,
            "paused": self.paused,
            "cycle_number": self.cycle_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimerSession:
        """Build from a dictionary produced by ``to_dict`` (or a database row)."""
        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [t for t in tags.split(",") if t]
        return cls(
            id=str(data["id"]),
            phase=SessionPhase(data["phase"]),
            start_time=_parse_timestamp(data["start_time"]),
            end_time=_parse_timestamp(data["end_time"]) if data.get("end_time") else None,
            target_seconds=int(data["target_seconds"]),
            duration_seconds=int(data.get("duration_seconds") or 0),
            project_ref=data.get("project_ref"),
            description=data.get("description"),
            tags=list(tags),
            completed=bool(data.get("completed", False)),
            paused=bool(data.get("paused", False)),
            cycle_number=int(data.get("cycle_number") or 0),
        )


def _parse_timestamp(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def normalize_tags(tags: list[str] | None) -> list[str]:
    """Strip and de-duplicate tags, enforcing count and length limits."""
    result: list[str] = []
    for tag in tags or []:
        tag = tag.strip()
        if not tag or tag in result:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tag '{tag[:20]}...' exceeds {MAX_TAG_LENGTH} characters")
        result.append(tag)
    if len(result) > MAX_TAGS:
        raise ValueError(f"At most {MAX_TAGS} tags are allowed")
    return result


def create_session(
    phase: SessionPhase | str,
    config: TimerConfig,
    started_at: datetime,
    project_ref: str | None = None,
    description: str | None = None,
    custom_minutes: float | None = None,
    tags: list[str] | None = None,
    cycle_number: int = 0,
) -> TimerSession:
    """Create a new session for ``phase`` starting at ``started_at``.

    The target comes from ``config`` unless ``custom_minutes`` is given.
    Raises DurationError when the resolved length is outside the phase's
    allowed range.
    """
    phase = SessionPhase.parse(phase)
    low, high = PHASE_LIMITS[phase]

    if custom_minutes is not None:
        if not timekeeping.validate_time_input(custom_minutes, low, high):
            raise DurationError(
                f"Custom duration for {phase.value} must be between {low} and {high} minutes"
            )
        minutes = custom_minutes
    else:
        minutes = phase_minutes(phase, config)
        if not timekeeping.validate_time_input(minutes, low, high):
            raise DurationError(
                f"Configured {phase.value} duration must be between {low} and {high} minutes"
            )

    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValueError(f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters")

    return TimerSession(
        phase=phase,
        start_time=started_at,
        target_seconds=timekeeping.minutes_to_seconds(minutes),
        project_ref=project_ref,
        description=description,
        tags=normalize_tags(tags),
        cycle_number=cycle_number,
    )


def validate_session(session: Any) -> bool:
    """Structural integrity check for a session loaded from outside."""
    if not isinstance(session, TimerSession):
        return False
    if not isinstance(session.id, str) or not session.id:
        return False
    if not isinstance(session.phase, SessionPhase):
        return False
    if not isinstance(session.start_time, datetime):
        return False
    if isinstance(session.target_seconds, bool) or not isinstance(session.target_seconds, int):
        return False
    if not MIN_TARGET_SECONDS <= session.target_seconds <= MAX_TARGET_SECONDS:
        return False
    if not isinstance(session.duration_seconds, int) or session.duration_seconds < 0:
        return False
    if session.end_time is not None:
        if not isinstance(session.end_time, datetime):
            return False
        try:
            if session.end_time < session.start_time:
                return False
        except TypeError:
            # Naive vs aware timestamps
            return False
    if not isinstance(session.tags, list) or len(session.tags) > MAX_TAGS:
        return False
    if any(not isinstance(t, str) or not t or len(t) > MAX_TAG_LENGTH for t in session.tags):
        return False
    return True


def session_from_payload(payload: dict[str, Any]) -> TimerSession:
    """Deserialize and validate an externally provided session.

    Raises IntegrityError when the payload is malformed.
    """
    try:
        session = TimerSession.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise IntegrityError(f"Malformed session payload: {e}") from e
    if not validate_session(session):
        raise IntegrityError(f"Session {session.id} failed integrity checks")
    return session


def productivity_score(session: TimerSession) -> float:
    """Score a finished session (0-100).

    Full marks for finishing between the target and 110% of it; early
    finishes scale down to 80, overtime loses 50 points per target length.
    """
    if not session.completed or session.target_seconds <= 0:
        return 0.0

    target = session.target_seconds
    actual = session.duration_seconds
    if target <= actual <= target * 1.1:
        return 100.0
    if actual < target:
        return max(0.0, (actual / target) * 80)
    overtime_ratio = (actual - target) / target
    return max(0.0, 100 - overtime_ratio * 50)


def session_stats(session: TimerSession, now: datetime) -> dict[str, Any]:
    """Elapsed/remaining/progress figures for a running session at ``now``."""
    elapsed = timekeeping.elapsed_seconds(session.start_time, now)
    target = session.target_seconds
    return {
        "elapsed": elapsed,
        "remaining": timekeeping.remaining_seconds(elapsed, target),
        "progress": timekeeping.progress_percent(elapsed, target),
        "is_complete": elapsed >= target,
        "is_overtime": timekeeping.is_overtime(elapsed, target),
        "overtime": timekeeping.overtime_seconds(elapsed, target),
        "productivity_score": productivity_score(session),
    }
