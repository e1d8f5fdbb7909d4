import asyncio
from datetime import timedelta

import pytest

from evalqueue.domain.models import Job, Submission, utcnow
from evalqueue.domain.states import JobStatus
from evalqueue.scheduler.sweeper import RetentionSweeper
from evalqueue.scheduler.timers import TaskScheduler
from evalqueue.store.memory import QueueStore

DAY = 24 * 60 * 60


def add(store, status, age: timedelta, completed=False) -> Job:
    stamp = utcnow() - age
    job = Job(
        project_id="p",
        user_id="u",
        submission=Submission("", "python"),
        status=status,
        created_at=stamp,
        updated_at=stamp,
        completed_at=stamp if completed else None,
    )
    return store.insert(job)


def test_evicts_only_old_terminal_jobs():
    store = QueueStore()
    old_done = add(store, JobStatus.COMPLETED, timedelta(hours=30), completed=True)
    old_failed = add(store, JobStatus.FAILED, timedelta(hours=25))
    old_cancelled = add(store, JobStatus.CANCELLED, timedelta(days=3))
    fresh_done = add(store, JobStatus.COMPLETED, timedelta(hours=1), completed=True)
    old_pending = add(store, JobStatus.PENDING, timedelta(days=10))
    old_evaluating = add(store, JobStatus.EVALUATING, timedelta(days=10))

    swept = []
    sweeper = RetentionSweeper(store, TaskScheduler(), retention_window=DAY, on_swept=swept.append)

    assert sweeper.sweep() == 3
    assert swept == [3]
    for job in (old_done, old_failed, old_cancelled):
        assert store.get(job.id) is None
    for job in (fresh_done, old_pending, old_evaluating):
        assert store.get(job.id) is not None


def test_explicit_now_moves_the_cutoff():
    store = QueueStore()
    job = add(store, JobStatus.COMPLETED, timedelta(hours=1), completed=True)
    sweeper = RetentionSweeper(store, TaskScheduler(), retention_window=DAY)

    assert sweeper.sweep() == 0
    assert sweeper.sweep(now=utcnow() + timedelta(days=2)) == 1
    assert store.get(job.id) is None


@pytest.mark.asyncio
async def test_keeps_failed_jobs_awaiting_retry():
    store = QueueStore()
    timers = TaskScheduler()
    waiting = add(store, JobStatus.FAILED, timedelta(days=2))
    timers.schedule(waiting.id, 60, lambda: None)

    sweeper = RetentionSweeper(store, timers, retention_window=DAY)
    assert sweeper.sweep() == 0
    assert store.get(waiting.id) is not None
    timers.cancel_all()


@pytest.mark.asyncio
async def test_periodic_loop_sweeps_and_stops():
    store = QueueStore()
    add(store, JobStatus.COMPLETED, timedelta(days=2), completed=True)
    sweeper = RetentionSweeper(store, TaskScheduler(), interval=0.01, retention_window=DAY)

    await sweeper.start()
    await asyncio.sleep(0.05)
    await sweeper.stop()

    assert len(store) == 0
