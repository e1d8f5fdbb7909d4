import pytest

from evalqueue.domain.models import Job, QueueStats, Submission
from evalqueue.domain.states import JobStatus
from evalqueue.domain.stats import calculate_stats


def job(status, **kwargs) -> Job:
    return Job(project_id="p", user_id="u", submission=Submission("", "python"), status=status, **kwargs)


def test_empty_queue():
    assert calculate_stats([]) == QueueStats()


def test_counts_and_averages():
    jobs = [
        job(JobStatus.PENDING, estimated_wait_time=30),
        job(JobStatus.PENDING, estimated_wait_time=60),
        job(JobStatus.PROCESSING),
        job(JobStatus.EVALUATING),
        job(JobStatus.COMPLETED, processing_time=10),
        job(JobStatus.COMPLETED, processing_time=20),
        job(JobStatus.COMPLETED, processing_time=None),
        job(JobStatus.FAILED),
        job(JobStatus.CANCELLED),
    ]

    stats = calculate_stats(jobs)

    assert stats.total_items == 9
    assert stats.pending_items == 2
    assert stats.processing_items == 2
    assert stats.completed_items == 3
    assert stats.failed_items == 1
    assert stats.cancelled_items == 1
    assert stats.average_wait_time == pytest.approx(45)
    assert stats.average_processing_time == pytest.approx(15)
    assert stats.estimated_queue_time == pytest.approx(30)


def test_counts_always_add_up_to_total():
    jobs = [job(status) for status in JobStatus]
    stats = calculate_stats(jobs)

    accounted = (
        stats.pending_items + stats.processing_items + stats.completed_items
        + stats.failed_items + stats.cancelled_items
    )
    assert accounted == stats.total_items == len(JobStatus)
