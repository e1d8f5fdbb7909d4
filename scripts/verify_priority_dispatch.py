#!/usr/bin/env python3
import asyncio
import logging
import os
import sys
import time

sys.path.append(os.getcwd())

from evalqueue.domain.states import JobStatus, QueueEventType
from evalqueue.service import EvaluationQueue
from evalqueue.settings import QueueConfig

logging.basicConfig(level=logging.ERROR)

class SleepyEvaluator:
    async def evaluate(self, code, language, context):
        await asyncio.sleep(0.05) # 50ms work to let the backlog build up
        return {"score": 100, "passed": True}

async def run_priority_test():
    print("--- Priority Dispatch Verification ---")
    started = []

    async with EvaluationQueue(SleepyEvaluator(), QueueConfig(max_concurrent_jobs=1)) as queue:
        queue.subscribe([QueueEventType.ITEM_STARTED], lambda event: started.append(event.data["item"].priority))

        # The first low job grabs the single slot; the rest form the backlog
        jobs = [await queue.add_to_queue("project-low-0", "verify", {"code": "pass", "language": "python"}, "low")]
        await asyncio.sleep(0.01)
        for i in range(1, 5):
            jobs.append(await queue.add_to_queue(f"project-low-{i}", "verify", {"code": "pass", "language": "python"}, "low"))
        for i in range(3):
            jobs.append(await queue.add_to_queue(f"project-urgent-{i}", "verify", {"code": "pass", "language": "python"}, "urgent"))

        start = time.time()
        while time.time() - start < 10:
            if all(queue.get_queue_item(j.id).status == JobStatus.COMPLETED for j in jobs):
                break
            await asyncio.sleep(0.05)

        stats = queue.get_queue_stats()

    print(f"Dispatch order: {[str(p) for p in started]}")
    print(f"Completed: {stats.completed_items}/{stats.total_items}")

    expected = ["low", "urgent", "urgent", "urgent", "low", "low", "low", "low"]
    if [str(p) for p in started] == expected and stats.completed_items == len(jobs):
        print("SUCCESS: Urgent jobs overtook the low-priority backlog.")
    else:
        print("FAILURE: Unexpected dispatch order.")
        sys.exit(1)

if __name__ == "__main__":
    asyncio.run(run_priority_test())
