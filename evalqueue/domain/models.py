import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from evalqueue.domain.errors import InvalidJobStateError
from evalqueue.domain.states import JobStatus, QueuePriority, QueueEventType, can_transition

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def generate_job_id() -> str:
    return f"queue_{uuid4().hex}"

DEFAULT_RUBRIC = {
    "functionality": 40,
    "code_quality": 30,
    "best_practices": 30,
}

@dataclass
class Submission:
    code: str
    language: str
    files: list[Any] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: "Submission | dict[str, Any]") -> "Submission":
        if isinstance(value, cls):
            return value
        return cls(
            code=value.get("code", ""),
            language=value.get("language", ""),
            files=list(value.get("files") or []),
            metadata=dict(value.get("metadata") or {}),
        )

@dataclass
class Job:
    project_id: str
    user_id: str
    submission: Submission
    priority: QueuePriority = QueuePriority.NORMAL
    status: JobStatus = JobStatus.PENDING

    id: str = field(default_factory=generate_job_id)
    position: int = 0
    estimated_wait_time: float = 0.0
    processing_time: Optional[int] = None

    retry_count: int = 0
    max_retries: int = 3

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Any = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def transition_to(self, target: JobStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidJobStateError(self.status, target)
        self.status = target

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    @property
    def finished_at(self) -> datetime:
        # Terminal timestamp used by retention
        return self.completed_at or self.updated_at

    def snapshot(self) -> "Job":
        return copy.deepcopy(self)

@dataclass
class EvaluationContext:
    """
    Everything the evaluator needs besides the code and language.

    Requirements and rubric weights are supplied by the caller through
    submission metadata; the queue never interprets them.
    """
    project_id: str
    requirements: list[str] = field(default_factory=list)
    rubric: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_RUBRIC))
    lesson_id: Optional[str] = None
    difficulty: Optional[str] = None
    learning_objectives: Optional[list[str]] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_job(cls, job: Job) -> "EvaluationContext":
        metadata = job.submission.metadata or {}
        return cls(
            project_id=job.project_id,
            requirements=list(metadata.get("requirements") or []),
            rubric=dict(metadata.get("rubric") or DEFAULT_RUBRIC),
            lesson_id=metadata.get("lesson_id"),
            difficulty=metadata.get("difficulty"),
            learning_objectives=metadata.get("learning_objectives"),
            metadata=copy.deepcopy(metadata),
        )

@dataclass(frozen=True)
class QueueStats:
    total_items: int = 0
    pending_items: int = 0
    processing_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    cancelled_items: int = 0
    average_wait_time: float = 0.0
    average_processing_time: float = 0.0
    estimated_queue_time: float = 0.0

@dataclass(frozen=True)
class QueueEvent:
    type: QueueEventType
    item_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

@dataclass(frozen=True)
class HealthStatus:
    is_running: bool
    active_jobs: int
    queue_size: int
    last_activity: Optional[datetime]
