from enum import StrEnum, auto

class JobStatus(StrEnum):
    PENDING = auto()          # Waiting for a worker
    PROCESSING = auto()       # Picked up by a worker
    EVALUATING = auto()       # Evaluator call in flight
    COMPLETED = auto()        # Evaluator returned a result
    FAILED = auto()           # Attempt failed (may still be retried)
    CANCELLED = auto()        # Cancelled by the owner
    RETRYING = auto()         # Transient: failed attempt being re-queued

class QueuePriority(StrEnum):
    LOW = auto()
    NORMAL = auto()
    HIGH = auto()
    URGENT = auto()

class QueueEventType(StrEnum):
    ITEM_ADDED = auto()
    ITEM_STARTED = auto()
    ITEM_COMPLETED = auto()
    ITEM_FAILED = auto()
    ITEM_CANCELLED = auto()
    QUEUE_UPDATED = auto()

TERMINAL_STATES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATES = frozenset({JobStatus.PROCESSING, JobStatus.EVALUATING})
CANCELLABLE_STATES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.EVALUATING})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.EVALUATING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.EVALUATING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.FAILED: frozenset({JobStatus.RETRYING}),
    JobStatus.RETRYING: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())
