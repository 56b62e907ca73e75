import asyncio
from datetime import date

import pytest

from pomolog.core.errors import IntegrityError
from pomolog.focus.session import SessionPhase
from pomolog.storage.database import Database
from pomolog.storage.snapshot import (
    SNAPSHOT_VERSION,
    DatabaseSnapshotStore,
    Snapshot,
    migrate,
    parse_snapshot,
)

V1_BLOB = {
    "config": {
        "workDuration": 30,
        "shortBreakDuration": 6,
        "longBreakDuration": 20,
        "longBreakInterval": 3,
        "autoStartBreaks": True,
        "autoStartPomodoros": False,
        "soundEnabled": False,
        "notificationsEnabled": True,
        "strictMode": False,
        "allowSkipBreaks": True,
        "showCycleProgress": True,
    },
    "currentCycleIndex": 5,
    "completedCycleCount": 4,
    "dailyGoal": 6,
    "statistics": {"totalSessions": 9, "completedSessions": 7, "totalWorkTime": 6000, "completionRate": 77.8},
    "lastSessionDate": "2026-03-01T17:45:00.000Z",
}


def test_migrate_v1_camel_case_blob():
    snapshot = migrate(1, V1_BLOB)

    assert snapshot.version == SNAPSHOT_VERSION
    assert snapshot.config.work_minutes == 30
    assert snapshot.config.long_break_interval == 3
    assert snapshot.config.auto_start_breaks is True
    assert snapshot.config.allow_skip_breaks is True
    assert snapshot.config.sound_enabled is False
    assert snapshot.current_cycle_index == 5
    assert snapshot.completed_cycle_count == 4
    assert snapshot.daily_goal == 6
    assert snapshot.last_session_date == date(2026, 3, 1)

    state = snapshot.to_cycle_state()
    assert state.statistics.total_sessions == 9
    assert state.statistics.total_work_seconds == 6000


def test_migrate_defaults_missing_fields():
    snapshot = migrate(1, {"currentCycleIndex": 2})

    assert snapshot.current_cycle_index == 2
    assert snapshot.completed_cycle_count == 0
    assert snapshot.config.work_minutes == 25
    assert snapshot.current_phase is SessionPhase.WORK
    assert snapshot.daily_goal == 8


def test_migrate_ignores_unknown_fields():
    snapshot = migrate(2, {"current_cycle_index": 1, "cycleStartTime": "whenever", "theme": "dark"})

    assert snapshot.current_cycle_index == 1


@pytest.mark.parametrize(
    "version, blob",
    [
        (1, ["not", "a", "mapping"]),
        (0, {}),
        (SNAPSHOT_VERSION + 1, {}),
        (1, {"currentCycleIndex": -3}),
        (1, {"config": {"workDuration": 500}}),
        (2, {"current_phase": "nap"}),
        (2, {"statistics": {"total_sessions": "many"}}),
    ],
)
def test_migrate_rejects_corrupt_blobs(version, blob):
    with pytest.raises(IntegrityError):
        migrate(version, blob)


def test_parse_snapshot_treats_unversioned_blobs_as_v1():
    assert parse_snapshot({"currentCycleIndex": 7}).current_cycle_index == 7
    assert parse_snapshot(Snapshot(current_cycle_index=3).model_dump(mode="json")).current_cycle_index == 3


def test_database_store_round_trip(db_path):
    async def scenario():
        db = Database(db_path)
        await db.connect()
        try:
            store = DatabaseSnapshotStore(db)
            assert await store.load() is None

            await store.save(Snapshot(current_cycle_index=4, daily_goal=10, last_session_date=date(2026, 3, 2)))
            return await store.load()
        finally:
            await db.close()

    loaded = asyncio.run(scenario())

    assert loaded.current_cycle_index == 4
    assert loaded.daily_goal == 10
    assert loaded.last_session_date == date(2026, 3, 2)


def test_database_store_rejects_garbage(db_path):
    async def scenario():
        db = Database(db_path)
        await db.connect()
        try:
            await db.set_config("engine_snapshot", "{not json")
            await DatabaseSnapshotStore(db).load()
        finally:
            await db.close()

    with pytest.raises(IntegrityError):
        asyncio.run(scenario())
