from typing import Iterable

from evalqueue.domain.models import Job, QueueStats
from evalqueue.domain.states import JobStatus

def calculate_stats(jobs: Iterable[Job]) -> QueueStats:
    """
    Derives queue-wide counts and averages from the current job set.

    Single pass, no side effects. Jobs in the transient RETRYING state are
    counted as pending since they are on their way back into the queue.
    """
    total = pending = processing = completed = failed = cancelled = 0
    wait_sum = 0.0
    processing_sum = 0.0
    processing_samples = 0

    for job in jobs:
        total += 1
        status = job.status
        if status in (JobStatus.PENDING, JobStatus.RETRYING):
            pending += 1
            wait_sum += job.estimated_wait_time
        elif status in (JobStatus.PROCESSING, JobStatus.EVALUATING):
            processing += 1
        elif status == JobStatus.COMPLETED:
            completed += 1
            if job.processing_time:
                processing_sum += job.processing_time
                processing_samples += 1
        elif status == JobStatus.FAILED:
            failed += 1
        elif status == JobStatus.CANCELLED:
            cancelled += 1

    average_processing = processing_sum / processing_samples if processing_samples else 0.0
    average_wait = wait_sum / pending if pending else 0.0

    return QueueStats(
        total_items=total,
        pending_items=pending,
        processing_items=processing,
        completed_items=completed,
        failed_items=failed,
        cancelled_items=cancelled,
        average_wait_time=average_wait,
        average_processing_time=average_processing,
        estimated_queue_time=pending * average_processing,
    )
