import logging
from typing import Any, Iterable, Optional

from evalqueue.domain.errors import QueueStoppedError
from evalqueue.domain.models import HealthStatus, Job, QueueStats, Submission
from evalqueue.domain.states import QueueEventType, QueuePriority
from evalqueue.evaluator.base import Evaluator
from evalqueue.scheduler.dispatcher import Dispatcher
from evalqueue.scheduler.sweeper import RetentionSweeper
from evalqueue.scheduler.timers import TaskScheduler
from evalqueue.services.events import EventBus, Listener
from evalqueue.settings import QueueConfig
from evalqueue.store.memory import QueueStore

logger = logging.getLogger(__name__)

class EvaluationQueue:
    """
    Queue of code submissions awaiting evaluation.

    Wires the store, event bus, dispatcher and retention sweeper into one
    injectable unit. Construct one per process (or per test), `start()` it
    inside a running event loop and `stop()` it on shutdown:

        async with EvaluationQueue(evaluator, QueueConfig(max_concurrent_jobs=2)) as queue:
            job = await queue.add_to_queue("project-1", "user-1", {"code": "...", "language": "python"})

    Everything returned to callers or passed to subscribers is a copy;
    mutating it has no effect on the queue.
    """

    def __init__(self, evaluator: Evaluator, config: Optional[QueueConfig] = None):
        self.config = config or QueueConfig()
        self.store = QueueStore()
        self.bus = EventBus()
        self.timers = TaskScheduler()
        self.dispatcher = Dispatcher(self.store, self.bus, evaluator, self.config, timers=self.timers)
        self.sweeper = RetentionSweeper(
            self.store,
            self.timers,
            interval=self.config.cleanup_interval,
            retention_window=self.config.retention_window,
            on_swept=lambda removed: self.dispatcher.publish_stats(),
        )
        self._stopped = False

    async def start(self):
        if self._stopped:
            raise QueueStoppedError()
        if self.dispatcher.is_running:
            return
        await self.dispatcher.start()
        await self.sweeper.start()
        logger.info(
            f"Evaluation queue started (max_concurrent_jobs={self.config.max_concurrent_jobs}, "
            f"timeout={self.config.timeout}s, max_retries={self.config.max_retries})"
        )

    async def stop(self):
        """Halts admission and drops all jobs, timers and subscriptions."""
        self._stopped = True
        await self.sweeper.stop()
        await self.dispatcher.stop()
        self.bus.clear()
        self.store.clear()
        logger.info("Evaluation queue stopped.")

    async def __aenter__(self) -> "EvaluationQueue":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # --- Public operations ---

    async def add_to_queue(
        self,
        project_id: str,
        user_id: str,
        submission: Submission | dict[str, Any],
        priority: QueuePriority | str = QueuePriority.NORMAL,
    ) -> Job:
        if self._stopped:
            raise QueueStoppedError()

        priority = QueuePriority(priority)
        job = Job(
            project_id=project_id,
            user_id=user_id,
            submission=Submission.coerce(submission),
            priority=priority,
            position=self.store.next_position(),
            estimated_wait_time=self.dispatcher.estimate_wait_time(priority),
            max_retries=self.config.max_retries,
        )
        job = self.store.insert(job)
        logger.info(f"Queued job {job.id} for project={project_id} user={user_id} priority={priority}")

        self.dispatcher.enqueue(job)
        self.dispatcher.emit(QueueEventType.ITEM_ADDED, job)
        self.dispatcher.publish_stats()
        return job

    def get_queue_item(self, job_id: str) -> Optional[Job]:
        return self.store.get(job_id)

    def get_user_queue_items(self, user_id: str) -> list[Job]:
        return self.store.list_by_user(user_id)

    def get_queue_stats(self) -> QueueStats:
        return self.store.stats()

    async def cancel_queue_item(self, job_id: str, user_id: str) -> bool:
        job = self.store.get(job_id)
        if job is None or job.user_id != user_id:
            return False
        return self.dispatcher.cancel(job_id)

    async def retry_queue_item(self, job_id: str, user_id: str) -> bool:
        job = self.store.get(job_id)
        if job is None or job.user_id != user_id or self._stopped:
            return False
        return self.dispatcher.requeue(job_id)

    def subscribe(self, event_types: Iterable[QueueEventType | str], callback: Listener) -> str:
        return self.bus.subscribe(event_types, callback)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.bus.unsubscribe(subscription_id)

    def get_health_status(self) -> HealthStatus:
        return HealthStatus(
            is_running=self.dispatcher.is_running,
            active_jobs=self.dispatcher.active_jobs,
            queue_size=len(self.store),
            last_activity=self.store.last_activity(),
        )
