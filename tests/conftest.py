"""
Shared fixtures for the evaluation queue tests.

- **StubEvaluator**: in-process evaluator with configurable delay and
  per-code failures; records call order and peak concurrency.
- **GatedEvaluator**: evaluator whose calls block until the test releases
  them, for observing jobs mid-evaluation.
- **queue_factory**: builds `EvaluationQueue` instances and stops them at
  teardown.
"""

import asyncio
from typing import Any, Callable, Optional

import pytest
import pytest_asyncio

from evalqueue.domain.errors import EvaluatorError
from evalqueue.domain.models import EvaluationContext
from evalqueue.service import EvaluationQueue
from evalqueue.settings import QueueConfig


class StubEvaluator:
    def __init__(
        self,
        delay: float = 0.0,
        fail: bool = False,
        fail_codes: Optional[set[str]] = None,
        fail_times: int = 0,
    ):
        self.delay = delay
        self.fail = fail
        self.fail_codes = fail_codes or set()
        self.fail_times = fail_times
        self.calls: list[str] = []
        self.contexts: list[EvaluationContext] = []
        self.cancelled: list[str] = []
        self.active = 0
        self.max_active = 0

    async def evaluate(self, code: str, language: str, context: EvaluationContext) -> dict[str, Any]:
        self.calls.append(code)
        self.contexts.append(context)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail or code in self.fail_codes:
                raise EvaluatorError("provider unavailable")
            if self.fail_times > 0:
                self.fail_times -= 1
                raise EvaluatorError("provider unavailable")
            return {"score": 90, "passed": True, "code": code, "language": language}
        except asyncio.CancelledError:
            self.cancelled.append(code)
            raise
        finally:
            self.active -= 1


class GatedEvaluator:
    """Each call blocks until `release()`; `ignore_cancel` swallows cancellation."""

    def __init__(self, ignore_cancel: bool = False):
        self.ignore_cancel = ignore_cancel
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.calls: list[str] = []
        self.cancelled: list[str] = []

    def release(self):
        self.gate.set()

    async def evaluate(self, code: str, language: str, context: EvaluationContext) -> dict[str, Any]:
        self.calls.append(code)
        self.started.set()
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled.append(code)
            if not self.ignore_cancel:
                raise
        return {"score": 75, "code": code}


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def submission(code: str = "print('hello')", language: str = "python", **metadata) -> dict[str, Any]:
    return {"code": code, "language": language, "metadata": metadata}


@pytest.fixture
def stub_evaluator() -> StubEvaluator:
    return StubEvaluator()


@pytest_asyncio.fixture
async def queue_factory():
    """Create queues on demand; every queue is stopped after the test."""
    created: list[EvaluationQueue] = []

    def factory(evaluator, **config) -> EvaluationQueue:
        queue = EvaluationQueue(evaluator, QueueConfig(**config))
        created.append(queue)
        return queue

    yield factory

    for queue in created:
        await queue.stop()
