from typing import Annotated

from fastapi import Depends, Request

from evalqueue.service import EvaluationQueue

def get_queue(request: Request) -> EvaluationQueue:
    return request.app.state.queue

# Dependency for the running queue
Queue = Annotated[EvaluationQueue, Depends(get_queue)]
