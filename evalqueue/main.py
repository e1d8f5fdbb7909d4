import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from evalqueue.api.v1.metrics import router as metrics_router
from evalqueue.api.v1.queue import router as queue_router
from evalqueue.evaluator.http import HttpEvaluator
from evalqueue.service import EvaluationQueue
from evalqueue.settings import settings

logger = logging.getLogger(__name__)

def create_app(queue: Optional[EvaluationQueue] = None) -> FastAPI:
    """
    Builds the HTTP application. Without an explicit queue, one is created
    from settings with an `HttpEvaluator` pointed at EVALUATOR_URL.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        evaluator = None
        if queue is None:
            evaluator = HttpEvaluator(
                settings.EVALUATOR_URL,
                api_key=settings.EVALUATOR_API_KEY,
                timeout=settings.EVALUATOR_REQUEST_TIMEOUT,
            )
            app.state.queue = EvaluationQueue(evaluator, settings.queue_config())
        else:
            app.state.queue = queue

        await app.state.queue.start()
        logger.info(f"{settings.PROJECT_NAME} ready.")

        yield

        # Shutdown
        await app.state.queue.stop()
        if evaluator is not None:
            await evaluator.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan
    )

    app.include_router(queue_router, prefix="/api/v1/queue", tags=["queue"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app

logging.basicConfig(level=settings.LOG_LEVEL.upper())

app = create_app()
