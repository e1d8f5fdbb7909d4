import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)

@dataclass
class ScheduledTask:
    key: str
    callback: Callable[..., Any]
    args: tuple = ()
    token: UUID = field(default_factory=uuid4)
    cancelled: bool = False
    handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        self.cancelled = True
        if self.handle:
            self.handle.cancel()

class TaskScheduler:
    """
    Delayed callbacks keyed by job id.

    At most one task is pending per key; scheduling again revokes the
    previous one. A task whose token is no longer current when its timer
    fires is dropped, so a revoked retry can never reach a stale job.
    """

    def __init__(self):
        self._tasks: dict[str, ScheduledTask] = {}

    def schedule(self, key: str, delay: float, callback: Callable[..., Any], *args) -> ScheduledTask:
        loop = asyncio.get_running_loop()
        self.cancel(key)

        task = ScheduledTask(key=key, callback=callback, args=args)
        task.handle = loop.call_later(max(0.0, delay), self._fire, key, task.token)
        self._tasks[key] = task
        logger.debug(f"Scheduled task {task.token} for {key} in {delay:.3f}s")
        return task

    def _fire(self, key: str, token: UUID) -> None:
        task = self._tasks.get(key)
        if task is None or task.token != token or task.cancelled:
            logger.debug(f"Dropping revoked task {token} for {key}")
            return
        del self._tasks[key]

        try:
            task.callback(*task.args)
        except Exception as e:
            logger.error(f"Scheduled task for {key} failed: {e}", exc_info=True)

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        logger.debug(f"Revoked task {task.token} for {key}")
        return True

    def cancel_all(self) -> int:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        return len(tasks)

    def has_pending(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)
