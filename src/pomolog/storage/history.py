"""Session history: buffered completion sink and queries over stored sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from pomolog.core.errors import IntegrityError
from pomolog.focus.session import SessionPhase, TimerSession, session_from_payload

if TYPE_CHECKING:
    from pomolog.storage.database import Database

logger = logging.getLogger(__name__)


def session_to_row(session: TimerSession) -> dict[str, Any]:
    """Convert to a dictionary for database insertion."""
    return {
        "id": session.id,
        "phase": session.phase.value,
        "start_time": session.start_time.isoformat(),
        "end_time": session.end_time.isoformat() if session.end_time else None,
        "target_seconds": session.target_seconds,
        "duration_seconds": session.duration_seconds,
        "project_ref": session.project_ref,
        "description": session.description,
        "tags": json.dumps(session.tags),
        "completed": session.completed,
        "cycle_number": session.cycle_number,
    }


def session_from_row(row: dict[str, Any]) -> TimerSession:
    data = dict(row)
    tags = data.get("tags")
    if isinstance(tags, str) and tags.startswith("["):
        try:
            data["tags"] = json.loads(tags)
        except json.JSONDecodeError as e:
            raise IntegrityError(f"Session {data.get('id')} has malformed tags") from e
    return session_from_payload(data)


class SessionHistory:
    """Completion sink that batches finished sessions before database writes.

    ``record`` is synchronous so the engine can call it from any transition;
    sessions are flushed periodically (default: every 30 seconds), when the
    buffer fills up, and on ``stop``.
    """

    DEFAULT_FLUSH_INTERVAL = 30  # seconds
    DEFAULT_MAX_SIZE = 20  # sessions

    def __init__(
        self,
        db: Database | None = None,
        flush_interval: int = DEFAULT_FLUSH_INTERVAL,
        max_size: int = DEFAULT_MAX_SIZE,
    ):
        self._db = db
        self._flush_interval = flush_interval
        self._max_size = max_size

        self._pending: list[TimerSession] = []
        self._flush_task: asyncio.Task | None = None
        self._background_flushes: set[asyncio.Task] = set()
        self._running = False

    def record(self, session: TimerSession) -> None:
        """Buffer a finished session. Triggers a flush when the buffer is full."""
        self._pending.append(session)
        count = len(self._pending)
        logger.debug(f"Buffered session {session.id} ({count} pending)")

        if count >= self._max_size:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("Buffer full but no event loop running; flush deferred")
                return
            task = loop.create_task(self.flush())
            self._background_flushes.add(task)
            task.add_done_callback(self._background_flush_done)

    def _background_flush_done(self, task: asyncio.Task) -> None:
        self._background_flushes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background flush of full buffer failed: {error}")

    async def flush(self) -> int:
        """Write buffered sessions to the database. Returns how many were written."""
        if self._db is None:
            logger.warning("No database configured, cannot flush")
            return 0

        if not self._pending:
            return 0
        sessions = self._pending.copy()
        self._pending.clear()

        try:
            async with self._db.transaction():
                for session in sessions:
                    await self._db.upsert("sessions", session_to_row(session))
            logger.debug(f"Flushed {len(sessions)} sessions to database")
            return len(sessions)

        except Exception as e:
            # Put sessions back on failure
            self._pending = sessions + self._pending
            logger.error(f"Failed to flush sessions: {e}")
            raise

    async def start(self) -> None:
        """Start the periodic flush task."""
        if self._running:
            return

        self._running = True
        self._flush_task = asyncio.create_task(self._periodic_flush())
        logger.info(f"Session history started (flush every {self._flush_interval}s)")

    async def stop(self) -> None:
        """Stop the periodic flush task and flush remaining sessions."""
        if not self._running:
            return

        self._running = False

        if self._flush_task:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        await self.flush()
        logger.info("Session history stopped")

    async def _periodic_flush(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._flush_interval)
                if self._running:
                    await self.flush()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic flush: {e}")

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_running(self) -> bool:
        return self._running

    # --- Queries ----------------------------------------------------------
    async def recent(self, limit: int = 20) -> list[TimerSession]:
        """Most recent sessions first, including any not yet flushed.

        Rows that fail integrity checks are skipped with a warning.
        """
        pending = sorted(self._pending, key=lambda s: s.start_time, reverse=True)
        if self._db is None:
            return pending[:limit]

        rows = await self._db.fetch_all(
            "SELECT * FROM sessions ORDER BY start_time DESC LIMIT ?", (limit,)
        )
        stored = []
        pending_ids = {s.id for s in pending}
        for row in rows:
            if row["id"] in pending_ids:
                continue
            try:
                stored.append(session_from_row(row))
            except IntegrityError as e:
                logger.warning(f"Skipping corrupt session row: {e}")

        merged = sorted(pending + stored, key=lambda s: s.start_time, reverse=True)
        return merged[:limit]

    async def completed_work_on(self, day: date) -> int:
        """Number of work sessions that ran their course on ``day``.

        A stored session counts when its duration reached its target.
        """
        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)

        def counts(session: TimerSession) -> bool:
            return (
                session.phase is SessionPhase.WORK
                and session.completed
                and session.duration_seconds >= session.target_seconds
                and start <= session.start_time.replace(tzinfo=None) < end
            )

        total = sum(1 for s in self._pending if counts(s))
        if self._db is None:
            return total

        pending_ids = tuple(s.id for s in self._pending) or ("",)
        placeholders = ", ".join("?" * len(pending_ids))
        row = await self._db.fetch_one(
            f"""SELECT COUNT(*) AS n FROM sessions
                WHERE phase = ? AND completed = 1 AND duration_seconds >= target_seconds
                AND start_time >= ? AND start_time < ? AND id NOT IN ({placeholders})""",
            (SessionPhase.WORK.value, start.isoformat(), end.isoformat(), *pending_ids),
        )
        return total + (row["n"] if row else 0)
