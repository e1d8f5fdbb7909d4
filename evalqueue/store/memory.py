import copy
import itertools
import logging
import threading
from datetime import datetime
from typing import Callable, Iterable, Optional

from evalqueue.domain.errors import JobNotFoundError, QueueError
from evalqueue.domain.models import Job, QueueStats, utcnow
from evalqueue.domain.states import JobStatus, QueuePriority
from evalqueue.domain.stats import calculate_stats

logger = logging.getLogger(__name__)

Mutator = Callable[[Job], None]

class QueueStore:
    """
    Authoritative in-memory table of jobs keyed by id.

    Every read returns a deep copy and every write goes through `update`,
    which applies the mutator to a working copy and commits it only if the
    mutator succeeds. Callers therefore never observe a half-applied change.
    """

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.RLock()
        self._positions = itertools.count(1)

    def next_position(self) -> int:
        with self._lock:
            return next(self._positions)

    def insert(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise QueueError(f"Job {job.id} already exists")
            if not job.position:
                job.position = next(self._positions)
            self._jobs[job.id] = copy.deepcopy(job)
            logger.debug(f"Stored job {job.id} at position {job.position}")
            return job.snapshot()

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job else None

    def list_all(self) -> list[Job]:
        with self._lock:
            return [job.snapshot() for job in self._jobs.values()]

    def list_by_user(self, user_id: str) -> list[Job]:
        # Most recent submission first
        with self._lock:
            jobs = [job.snapshot() for job in self._jobs.values() if job.user_id == user_id]
        return sorted(jobs, key=lambda j: j.position, reverse=True)

    def list_pending(self) -> list[Job]:
        with self._lock:
            jobs = [job.snapshot() for job in self._jobs.values() if job.status == JobStatus.PENDING]
        return sorted(jobs, key=lambda j: j.position)

    def count(self, statuses: Iterable[JobStatus]) -> int:
        wanted = frozenset(statuses)
        with self._lock:
            return sum(1 for job in self._jobs.values() if job.status in wanted)

    def stats(self) -> QueueStats:
        # Read-only aggregation over the live records, nothing is copied
        with self._lock:
            return calculate_stats(self._jobs.values())

    def pending_by_priority(self) -> dict[QueuePriority, int]:
        depth = {priority: 0 for priority in QueuePriority}
        with self._lock:
            for job in self._jobs.values():
                if job.status == JobStatus.PENDING:
                    depth[job.priority] += 1
        return depth

    def update(self, job_id: str, mutator: Mutator) -> Job:
        """
        Applies `mutator` atomically to the job and returns a snapshot of the
        committed record. Exceptions raised by the mutator (including invalid
        state transitions) leave the stored job untouched.
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id)

            working = copy.deepcopy(current)
            mutator(working)
            if working.id != job_id:
                raise QueueError(f"Mutator changed identity of job {job_id}")
            working.updated_at = utcnow()

            self._jobs[job_id] = working
            return working.snapshot()

    def remove(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()

    def last_activity(self) -> Optional[datetime]:
        with self._lock:
            if not self._jobs:
                return None
            return max(job.updated_at for job in self._jobs.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs
