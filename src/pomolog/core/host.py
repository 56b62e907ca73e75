"""Timer host: wires the engine to storage and drives its periodic recompute."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable
from datetime import datetime

from pomolog.core.config import Settings, YamlConfigProvider, get_settings
from pomolog.focus.engine import FocusEngine
from pomolog.focus.ports import ConfigurationProvider, LoggingNotifier, NotificationPort
from pomolog.focus.state_machine import TimerReading, TimerStatus
from pomolog.storage.database import Database, init_database
from pomolog.storage.history import SessionHistory
from pomolog.storage.persistence import PersistenceCoordinator
from pomolog.storage.snapshot import DatabaseSnapshotStore

logger = logging.getLogger(__name__)


class TimerHost:
    """Owns the engine and its collaborators for the lifetime of a process.

    The engine never reads a clock; the host passes ``clock()`` into every
    call and runs the periodic recompute callback. The YAML configuration
    file is authoritative here, so restored snapshots do not overwrite it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        notifier: NotificationPort | None = None,
        config_provider: ConfigurationProvider | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self._notifier = notifier or LoggingNotifier()
        self._config_provider = config_provider or YamlConfigProvider(self.settings)
        self._running = False

        self.db: Database | None = None
        self.history: SessionHistory | None = None
        self.engine: FocusEngine | None = None
        self.persistence: PersistenceCoordinator | None = None

        # Display hook, called after every recompute
        self.on_tick: Callable[[TimerReading], None] | None = None

        self._tick_task: asyncio.Task | None = None
        self._suspended = False
        self.integrity_ok: bool | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    def now(self) -> datetime:
        return self.clock()

    async def start(self, tick: bool = True) -> FocusEngine:
        """Open storage, restore the engine and (optionally) start ticking."""
        if self._running and self.engine is not None:
            logger.warning("Timer host already running")
            return self.engine

        logger.info("Starting timer host...")
        self.settings.ensure_directories()

        self.db = await init_database(self.settings.db_path)
        self.integrity_ok = await self.db.check_integrity()
        if not self.integrity_ok:
            logger.warning(f"Continuing with a damaged database at {self.settings.db_path}")
        engine_settings = self.settings.engine

        self.history = SessionHistory(
            db=self.db,
            flush_interval=engine_settings.flush_interval_seconds,
            max_size=engine_settings.history_buffer_size,
        )
        self.engine = FocusEngine(
            self._config_provider,
            sink=self.history,
            notifier=self._notifier,
        )
        self.persistence = PersistenceCoordinator(
            self.engine,
            DatabaseSnapshotStore(self.db),
            flush_interval=engine_settings.flush_interval_seconds,
        )

        await self.persistence.restore(apply_config=False)
        await self.history.start()
        await self.persistence.start()

        self._running = True
        if tick:
            self._start_ticking()

        logger.info("Timer host started")
        return self.engine

    async def stop(self) -> None:
        """Stop ticking and flush everything to storage.

        A live session is left unrecorded; callers that want it kept should
        ``engine.stop(now)`` first.
        """
        if not self._running and self.db is None:
            return

        logger.info("Stopping timer host...")
        self._running = False
        self._suspended = False
        await self._stop_ticking()

        if self.persistence:
            await self.persistence.stop()
            self.persistence = None

        if self.history:
            await self.history.stop()

        if self.db:
            await self.db.close()
            self.db = None

        logger.info("Timer host stopped")

    async def suspend(self) -> None:
        """Stop the periodic callback and persist, e.g. before system sleep."""
        if self._suspended:
            return
        self._suspended = True
        await self._stop_ticking()
        if self.persistence:
            await self.persistence.on_suspend()
        logger.info("Timer host suspended")

    def resume_from_suspension(self) -> TimerReading | None:
        """Catch up with a single recompute and restart the periodic callback."""
        if not self._suspended:
            return None
        self._suspended = False
        if self.persistence is None:
            return None
        reading = self.persistence.on_resume(self.now())
        self._publish(reading)
        if self._running:
            self._start_ticking()
        logger.info("Timer host resumed")
        return reading

    async def wait_until_idle(self, poll_seconds: float | None = None) -> None:
        """Return once no session is running or paused."""
        interval = poll_seconds or self.settings.engine.tick_interval_seconds
        while self._running and self.engine is not None and self.engine.status is not TimerStatus.IDLE:
            await asyncio.sleep(interval)

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown, sig)

    def _handle_shutdown(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        self._running = False
        if self.engine is not None:
            self.engine.stop(self.now())
            # Discard a follow-up phase the auto-start policy may have begun
            self.engine.reset()

    # --- Ticking ----------------------------------------------------------
    def tick(self) -> TimerReading | None:
        """One recompute at the current clock time."""
        if self.engine is None:
            return None
        reading = self.engine.recompute(self.now())
        self._publish(reading)
        return reading

    def _publish(self, reading: TimerReading) -> None:
        if self.on_tick is None:
            return
        try:
            self.on_tick(reading)
        except Exception as e:
            logger.error(f"Error in tick display callback: {e}")

    def _start_ticking(self) -> None:
        if self._tick_task is None:
            self._tick_task = asyncio.create_task(self._tick_loop())

    async def _stop_ticking(self) -> None:
        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None

    async def _tick_loop(self) -> None:
        interval = self.settings.engine.tick_interval_seconds
        while self._running:
            try:
                self.tick()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in tick loop: {e}")
                await asyncio.sleep(interval)
