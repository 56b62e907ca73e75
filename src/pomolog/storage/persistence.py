"""Debounced snapshot persistence for the timer engine."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from pomolog.core.errors import IntegrityError
from pomolog.focus.state_machine import TimerReading
from pomolog.storage.snapshot import Snapshot

if TYPE_CHECKING:
    from pomolog.focus.engine import FocusEngine
    from pomolog.focus.ports import SnapshotStore

logger = logging.getLogger(__name__)


class PersistenceCoordinator:
    """Keeps the stored snapshot in step with the engine.

    Every engine mutation marks the coordinator dirty; a periodic task saves
    the snapshot at most once per interval while dirty. Suspension forces a
    flush; resumption needs a single recompute and no I/O.
    """

    DEFAULT_FLUSH_INTERVAL = 30  # seconds

    def __init__(
        self,
        engine: FocusEngine,
        store: SnapshotStore,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ):
        self._engine = engine
        self._store = store
        self._flush_interval = flush_interval

        self._dirty = False
        self._flush_task: asyncio.Task | None = None
        self._running = False

        engine.add_mutation_listener(self.mark_dirty)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def is_running(self) -> bool:
        return self._running

    def mark_dirty(self) -> None:
        self._dirty = True

    async def restore(self, apply_config: bool = True) -> Snapshot | None:
        """Load the stored snapshot into the engine.

        A snapshot that fails integrity checks is logged and replaced by the
        default cycle state; it is overwritten on the next flush.
        """
        try:
            snapshot = await self._store.load()
        except IntegrityError as e:
            logger.error(f"Stored snapshot is corrupt, starting fresh: {e}")
            self._engine.restore(Snapshot(config=self._engine.config), apply_config=False)
            self._dirty = True
            return None

        if snapshot is None:
            logger.info("No stored snapshot; using defaults")
            return None

        self._engine.restore(snapshot, apply_config=apply_config)
        self._dirty = False
        return snapshot

    async def flush(self, force: bool = False) -> bool:
        """Save the engine snapshot if anything changed. Returns True if saved."""
        if not self._dirty and not force:
            return False

        snapshot = self._engine.snapshot()
        # Mutations during the save mark us dirty again
        self._dirty = False
        try:
            await self._store.save(snapshot)
        except Exception as e:
            self._dirty = True
            logger.error(f"Failed to save snapshot: {e}")
            raise
        logger.debug("Snapshot flushed")
        return True

    async def on_suspend(self) -> None:
        """Host is about to stop calling back: persist now."""
        await self.flush()

    def on_resume(self, now: datetime) -> TimerReading:
        """Host is calling back again: one recompute catches up."""
        return self._engine.resume_from_suspension(now)

    async def start(self) -> None:
        """Start the periodic flush task."""
        if self._running:
            return

        self._running = True
        self._flush_task = asyncio.create_task(self._periodic_flush())
        logger.info(f"Persistence started (flush every {self._flush_interval}s while dirty)")

    async def stop(self) -> None:
        """Stop the periodic flush task and flush pending changes."""
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
        self._engine.remove_mutation_listener(self.mark_dirty)
        logger.info("Persistence stopped")

    async def _periodic_flush(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._flush_interval)
                if self._running:
                    await self.flush()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic snapshot flush: {e}")
