import asyncio
import heapq
import logging
from typing import Any, Optional

from evalqueue.api.v1.metrics import (
    JOB_COMPLETE_TOTAL,
    JOB_DURATION,
    JOB_FAILURES,
    JOB_START_DELAY,
    JOB_TIMEOUTS,
    JOBS_INFLIGHT,
    QUEUE_DEPTH,
)
from evalqueue.domain.errors import EvaluatorError, InvalidJobStateError, JobNotFoundError, ProcessingTimeoutError
from evalqueue.domain.models import EvaluationContext, Job, QueueEvent, QueueStats, utcnow
from evalqueue.domain.retry import calculate_retry_delay
from evalqueue.domain.states import ACTIVE_STATES, JobStatus, QueueEventType, QueuePriority
from evalqueue.evaluator.base import Evaluator
from evalqueue.scheduler.timers import TaskScheduler
from evalqueue.services.events import EventBus
from evalqueue.settings import QueueConfig
from evalqueue.store.memory import QueueStore

logger = logging.getLogger(__name__)

class Dispatcher:
    """
    Scheduling core of the evaluation queue.

    A fixed pool of `max_concurrent_jobs` workers pulls from one ready-queue,
    a heap keyed by (priority weight desc, position asc). Each worker handles
    one job at a time, so the concurrency bound is the pool size itself.

    Heap entries are never removed in place. Cancelled, removed or re-queued
    jobs leave stale entries behind, which are skipped when popped.
    """

    def __init__(
        self,
        store: QueueStore,
        bus: EventBus,
        evaluator: Evaluator,
        config: QueueConfig,
        timers: Optional[TaskScheduler] = None,
    ):
        self.store = store
        self.bus = bus
        self.evaluator = evaluator
        self.config = config
        self.timers = timers or TaskScheduler()

        self._ready: list[tuple[float, int, str]] = []
        self._wakeup = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._inflight: dict[str, asyncio.Task] = {}
        self._withdrawals: dict[str, asyncio.Future] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_jobs(self) -> int:
        return self.store.count(ACTIVE_STATES)

    async def start(self):
        if self._running:
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._workers = [
            asyncio.create_task(self._worker(f"worker-{i}"))
            for i in range(self.config.max_concurrent_jobs)
        ]
        if self._ready:
            self._wakeup.set()
        logger.info(f"Dispatcher started with {len(self._workers)} workers.")

    async def stop(self):
        self._running = False
        revoked = self.timers.cancel_all()

        for task in list(self._inflight.values()):
            task.cancel()
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._workers = []
        self._inflight.clear()
        self._withdrawals.clear()
        self._ready.clear()
        logger.info(f"Dispatcher stopped ({revoked} scheduled retries revoked).")

    # --- Ready queue ---

    def enqueue(self, job: Job) -> None:
        entry = (-self.config.weight(job.priority), job.position, job.id)
        heapq.heappush(self._ready, entry)
        self._wakeup.set()

    def claim_next(self) -> Optional[Job]:
        """
        Pops entries until one still refers to a pending job at the same
        position, and claims it by moving it to PROCESSING.
        """
        while self._ready:
            _, position, job_id = heapq.heappop(self._ready)
            current = self.store.get(job_id)
            if current is None or current.status != JobStatus.PENDING or current.position != position:
                continue

            def claim(job: Job):
                job.transition_to(JobStatus.PROCESSING)
                job.started_at = utcnow()
                job.completed_at = None
                job.processing_time = None

            return self.store.update(job_id, claim)
        return None

    def estimate_wait_time(self, priority: QueuePriority) -> float:
        pending = self.store.count([JobStatus.PENDING])
        return max(
            self.config.base_wait_time,
            pending * self.config.wait_time_per_item / self.config.weight(priority),
        )

    # --- Workers ---

    async def _worker(self, name: str):
        logger.debug(f"{name} started")
        while self._running:
            job = self.claim_next()
            if job is None:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            try:
                await self.process(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Only reachable through a queue-internal bug; keep the worker alive
                logger.error(f"{name} crashed while processing {job.id}: {e}", exc_info=True)
        logger.debug(f"{name} stopped")

    async def process(self, job: Job):
        """Runs one attempt of a job already claimed as PROCESSING."""
        logger.info(f"Processing job {job.id} (priority={job.priority}, attempt={job.retry_count + 1})")
        JOB_START_DELAY.observe(max(0.0, (job.started_at - job.created_at).total_seconds()))
        self.emit(QueueEventType.ITEM_STARTED, job)
        self.publish_stats()

        try:
            job = self.store.update(job.id, lambda j: j.transition_to(JobStatus.EVALUATING))
        except (InvalidJobStateError, JobNotFoundError):
            logger.info(f"Job {job.id} was withdrawn before evaluation started")
            return

        context = EvaluationContext.for_job(job)
        evaluation = asyncio.create_task(self._evaluate(job, context))
        evaluation.add_done_callback(_consume_outcome)
        withdrawn = asyncio.get_running_loop().create_future()
        self._inflight[job.id] = evaluation
        self._withdrawals[job.id] = withdrawn

        try:
            done, _ = await asyncio.wait(
                {evaluation, withdrawn},
                timeout=self.config.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            evaluation.cancel()
            raise
        finally:
            self._inflight.pop(job.id, None)
            self._withdrawals.pop(job.id, None)

        if withdrawn in done:
            # The evaluator may ignore the cancel; its outcome is never awaited
            logger.info(f"Released slot of withdrawn job {job.id}")
            return

        if not done:
            # Result of a late evaluator is discarded
            evaluation.cancel()
            JOB_TIMEOUTS.inc()
            self.fail(job.id, ProcessingTimeoutError(self.config.timeout))
        elif evaluation.cancelled():
            # Aborted without a withdrawal; the job must not stay EVALUATING
            self.fail(job.id, EvaluatorError("Evaluation aborted"))
        elif evaluation.exception() is not None:
            self.fail(job.id, evaluation.exception())
        else:
            self.complete(job.id, evaluation.result())

        self.publish_stats()

    async def _evaluate(self, job: Job, context: EvaluationContext) -> Any:
        return await self.evaluator.evaluate(job.submission.code, job.submission.language, context)

    # --- Outcomes ---

    def complete(self, job_id: str, result: Any) -> Optional[Job]:
        def mark_completed(job: Job):
            job.transition_to(JobStatus.COMPLETED)
            job.result = result
            job.completed_at = utcnow()
            job.processing_time = round((job.completed_at - job.started_at).total_seconds())

        try:
            job = self.store.update(job_id, mark_completed)
        except (InvalidJobStateError, JobNotFoundError):
            logger.info(f"Discarding evaluation result for withdrawn job {job_id}")
            return None

        JOB_DURATION.observe((job.completed_at - job.started_at).total_seconds())
        JOB_COMPLETE_TOTAL.labels(result="completed").inc()
        logger.info(f"Job {job_id} completed in {job.processing_time}s")
        self.emit(QueueEventType.ITEM_COMPLETED, job, result=job.result)
        return job

    def fail(self, job_id: str, error: BaseException) -> Optional[Job]:
        message = _describe(error)

        def mark_failed(job: Job):
            job.transition_to(JobStatus.FAILED)
            job.error = message

        try:
            job = self.store.update(job_id, mark_failed)
        except (InvalidJobStateError, JobNotFoundError):
            logger.info(f"Discarding failure for withdrawn job {job_id}: {message}")
            return None

        will_retry = not job.retries_exhausted
        JOB_FAILURES.labels(type="retryable" if will_retry else "final").inc()
        JOB_COMPLETE_TOTAL.labels(result="failed").inc()
        self.emit(QueueEventType.ITEM_FAILED, job, error=message)

        if will_retry and self._running:
            delay = calculate_retry_delay(
                job.retry_count,
                base_delay_seconds=self.config.retry_delay,
                max_delay_seconds=self.config.max_retry_delay,
                backoff=self.config.retry_backoff,
            )
            self.timers.schedule(job_id, delay, self._auto_retry, job_id)
            logger.warning(
                f"Job {job_id} failed (attempt {job.retry_count + 1}/{job.max_retries + 1}): {message}. "
                f"Retrying in {delay:.1f}s"
            )
        else:
            logger.error(f"Job {job_id} failed permanently after {job.retry_count} retries: {message}")
        return job

    def _auto_retry(self, job_id: str):
        if not self.requeue(job_id):
            logger.info(f"Automatic retry of job {job_id} skipped; job no longer eligible")

    def requeue(self, job_id: str) -> bool:
        """
        Starts a new attempt for a failed job that still has retries left.
        Any pending automatic retry for the job is revoked first.
        """
        job = self.store.get(job_id)
        if job is None:
            return False
        wait = self.estimate_wait_time(job.priority)
        position = self.store.next_position()

        def reset(job: Job):
            if job.status != JobStatus.FAILED or job.retries_exhausted:
                raise InvalidJobStateError(job.status, JobStatus.RETRYING)
            job.transition_to(JobStatus.RETRYING)
            job.transition_to(JobStatus.PENDING)
            job.retry_count += 1
            job.error = None
            job.position = position
            job.estimated_wait_time = wait

        try:
            job = self.store.update(job_id, reset)
        except (InvalidJobStateError, JobNotFoundError):
            return False

        self.timers.cancel(job_id)
        logger.info(f"Job {job_id} re-queued (retry {job.retry_count}/{job.max_retries})")
        self.enqueue(job)
        self.emit(QueueEventType.ITEM_ADDED, job)
        self.publish_stats()
        return True

    def cancel(self, job_id: str) -> bool:
        """
        Cancels a job that has not reached a terminal state. An in-flight
        evaluation is aborted; whatever it returns afterwards is discarded.
        """
        try:
            job = self.store.update(job_id, lambda j: j.transition_to(JobStatus.CANCELLED))
        except (InvalidJobStateError, JobNotFoundError):
            return False

        self.timers.cancel(job_id)
        evaluation = self._inflight.pop(job_id, None)
        if evaluation is not None:
            evaluation.cancel()
        withdrawn = self._withdrawals.pop(job_id, None)
        if withdrawn is not None and not withdrawn.done():
            withdrawn.set_result(None)

        JOB_COMPLETE_TOTAL.labels(result="cancelled").inc()
        logger.info(f"Job {job_id} cancelled")
        self.emit(QueueEventType.ITEM_CANCELLED, job)
        self.publish_stats()
        return True

    # --- Notification ---

    def emit(self, event_type: QueueEventType, job: Job, **data):
        self.bus.publish(QueueEvent(type=event_type, item_id=job.id, data={"item": job, **data}))

    def publish_stats(self) -> QueueStats:
        stats = self.store.stats()

        # Gauges are derived from the store, never incremented in place
        for priority, count in self.store.pending_by_priority().items():
            QUEUE_DEPTH.labels(priority=priority).set(count)
        JOBS_INFLIGHT.set(stats.processing_items)

        self.bus.publish(QueueEvent(type=QueueEventType.QUEUE_UPDATED, item_id="", data={"stats": stats}))
        return stats

def _describe(error: BaseException) -> str:
    if isinstance(error, EvaluatorError):
        return str(error) or type(error).__name__
    return f"{type(error).__name__}: {error}"

def _consume_outcome(task: asyncio.Task):
    # Evaluations abandoned on timeout or cancellation may still finish later
    if not task.cancelled():
        task.exception()
