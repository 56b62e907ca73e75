"""Versioned engine snapshots: model, migration and SQLite store."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import fields
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pomolog.core.config import TimerConfig
from pomolog.core.errors import IntegrityError
from pomolog.focus.cycle import DAILY_GOAL_LIMITS, CycleState, CycleStatistics
from pomolog.focus.session import SessionPhase

if TYPE_CHECKING:
    from pomolog.storage.database import Database

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 2
SNAPSHOT_KEY = "engine_snapshot"


class Snapshot(BaseModel):
    """Durable subset of engine state.

    Holds configuration and cycle counters only; an in-progress session is
    never part of a snapshot.
    """

    model_config = ConfigDict(extra="ignore")

    version: int = SNAPSHOT_VERSION
    config: TimerConfig = Field(default_factory=TimerConfig)
    current_cycle_index: int = Field(default=0, ge=0)
    completed_cycle_count: int = Field(default=0, ge=0)
    current_phase: SessionPhase = SessionPhase.WORK
    daily_goal: int = Field(default=8, ge=DAILY_GOAL_LIMITS[0], le=DAILY_GOAL_LIMITS[1])
    completed_today: int = Field(default=0, ge=0)
    last_session_date: date | None = None
    statistics: dict[str, Any] = Field(default_factory=dict)

    @field_validator("current_phase", mode="before")
    @classmethod
    def _parse_phase(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-")
        return value

    @field_validator("last_session_date", mode="before")
    @classmethod
    def _parse_day(cls, value: Any) -> Any:
        # Older snapshots stored a full timestamp
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return date.fromisoformat(value.split("T", 1)[0])
        return value

    def to_cycle_state(self) -> CycleState:
        """Rebuild the scheduler's cycle state."""
        return CycleState(
            current_cycle_index=self.current_cycle_index,
            completed_cycle_count=self.completed_cycle_count,
            current_phase=self.current_phase,
            daily_goal=self.daily_goal,
            completed_today=self.completed_today,
            last_session_date=self.last_session_date,
            statistics=statistics_from_dict(self.statistics),
        )

    def to_json(self) -> str:
        return self.model_dump_json()


def statistics_from_dict(data: dict[str, Any]) -> CycleStatistics:
    """Counters from a stored mapping; derived and unknown keys are ignored."""
    stats = CycleStatistics()
    for f in fields(CycleStatistics):
        name = f.name
        value = data.get(name)
        if value is None:
            continue
        try:
            setattr(stats, name, max(0, int(value)))
        except (TypeError, ValueError) as e:
            raise IntegrityError(f"Invalid statistics value for {name}: {value!r}") from e
    return stats


# --- Migrations ---------------------------------------------------------

_V1_CONFIG_KEYS = {
    "workDuration": "work_minutes",
    "shortBreakDuration": "short_break_minutes",
    "longBreakDuration": "long_break_minutes",
    "focusDuration": "focus_minutes",
    "longBreakInterval": "long_break_interval",
    "autoStartBreaks": "auto_start_breaks",
    "autoStartPomodoros": "auto_start_work",
    "allowSkipBreaks": "allow_skip_breaks",
    "strictMode": "strict_mode",
    "allowOvertime": "allow_overtime",
    "soundEnabled": "sound_enabled",
    "notificationsEnabled": "notifications_enabled",
}

_V1_STATISTICS_KEYS = {
    "totalSessions": "total_sessions",
    "completedSessions": "completed_sessions",
    "skippedSessions": "skipped_sessions",
    "totalWorkTime": "total_work_seconds",
    "totalBreakTime": "total_break_seconds",
}


def _migrate_v1(blob: dict[str, Any]) -> dict[str, Any]:
    """camelCase v1 layout -> snake_case v2 layout."""
    raw_config = blob.get("config") or {}
    if not isinstance(raw_config, dict):
        raise IntegrityError("Snapshot config is not a mapping")
    config = {_V1_CONFIG_KEYS.get(key, key): value for key, value in raw_config.items()}

    raw_stats = blob.get("statistics") or {}
    if not isinstance(raw_stats, dict):
        raise IntegrityError("Snapshot statistics is not a mapping")
    statistics = {_V1_STATISTICS_KEYS.get(key, key): value for key, value in raw_stats.items()}

    migrated: dict[str, Any] = {
        "config": config,
        "current_cycle_index": blob.get("currentCycleIndex", blob.get("currentCycle", 0)),
        "completed_cycle_count": blob.get("completedCycleCount", blob.get("completedCycles", 0)),
        "statistics": statistics,
    }
    optional = {
        "currentPhase": "current_phase",
        "dailyGoal": "daily_goal",
        "completedToday": "completed_today",
        "lastSessionDate": "last_session_date",
    }
    for old, new in optional.items():
        if blob.get(old) is not None:
            migrated[new] = blob[old]
    return migrated


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1,
}


def migrate(old_version: int, blob: Any) -> Snapshot:
    """Upgrade a stored snapshot of ``old_version`` to the current layout.

    Pure: no I/O. Unknown fields are ignored and missing fields take their
    defaults. Raises IntegrityError when the blob cannot be interpreted.
    """
    if not isinstance(blob, dict):
        raise IntegrityError(f"Snapshot must be a mapping, got {type(blob).__name__}")
    if isinstance(old_version, bool) or not isinstance(old_version, int) or old_version < 1:
        raise IntegrityError(f"Invalid snapshot version: {old_version!r}")
    if old_version > SNAPSHOT_VERSION:
        raise IntegrityError(
            f"Snapshot version {old_version} is newer than supported version {SNAPSHOT_VERSION}"
        )

    data = dict(blob)
    for version in range(old_version, SNAPSHOT_VERSION):
        data = MIGRATIONS[version](data)
        logger.debug(f"Migrated snapshot from version {version} to {version + 1}")
    data["version"] = SNAPSHOT_VERSION

    try:
        snapshot = Snapshot.model_validate(data)
        # Fail here rather than at restore time
        statistics_from_dict(snapshot.statistics)
    except ValidationError as e:
        raise IntegrityError(f"Snapshot failed validation: {e.error_count()} error(s)") from e
    return snapshot


def parse_snapshot(blob: Any) -> Snapshot:
    """Interpret a decoded snapshot of any supported version."""
    if not isinstance(blob, dict):
        raise IntegrityError(f"Snapshot must be a mapping, got {type(blob).__name__}")
    # v1 blobs carried no version field
    return migrate(blob.get("version", 1), blob)


class DatabaseSnapshotStore:
    """Snapshot store backed by the database key/value table."""

    def __init__(self, db: Database, key: str = SNAPSHOT_KEY):
        self._db = db
        self._key = key

    async def load(self) -> Snapshot | None:
        """Load the stored snapshot; None when nothing has been saved yet."""
        raw = await self._db.get_config(self._key)
        if raw is None:
            return None
        try:
            blob = json.loads(raw)
        except json.JSONDecodeError as e:
            raise IntegrityError(f"Stored snapshot is not valid JSON: {e}") from e
        return parse_snapshot(blob)

    async def save(self, snapshot: Snapshot) -> None:
        await self._db.set_config(self._key, snapshot.to_json())
        logger.debug(f"Snapshot saved (cycle {snapshot.current_cycle_index})")
