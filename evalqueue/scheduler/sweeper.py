import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from evalqueue.api.v1.metrics import JOBS_SWEPT
from evalqueue.domain.models import utcnow
from evalqueue.domain.states import TERMINAL_STATES
from evalqueue.scheduler.timers import TaskScheduler
from evalqueue.store.memory import QueueStore

logger = logging.getLogger(__name__)

class RetentionSweeper:
    """
    Evicts terminal jobs whose terminal timestamp is older than the
    retention window. Failed jobs waiting on a scheduled retry are kept.
    """

    def __init__(
        self,
        store: QueueStore,
        timers: TaskScheduler,
        interval: float = 3600,
        retention_window: float = 24 * 60 * 60,
        on_swept: Optional[Callable[[int], None]] = None,
    ):
        self.store = store
        self.timers = timers
        self.interval = interval
        self.retention_window = timedelta(seconds=retention_window)
        self.on_swept = on_swept
        self._running = False
        self._task = None

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Retention sweeper started.")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Retention sweeper stopped.")

    async def _loop(self):
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error in retention sweeper: {e}", exc_info=True)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Removes expired terminal jobs and returns how many were evicted."""
        cutoff = (now or utcnow()) - self.retention_window

        removed = 0
        for job in self.store.list_all():
            if job.status not in TERMINAL_STATES or self.timers.has_pending(job.id):
                continue
            if job.finished_at < cutoff and self.store.remove(job.id):
                removed += 1

        if removed:
            JOBS_SWEPT.inc(removed)
            logger.info(f"Retention sweep evicted {removed} jobs older than {cutoff.isoformat()}")

        if self.on_swept:
            self.on_swept(removed)
        return removed
