"""
Celery Tasks for the Redecoration Pipeline

Thin wrappers that rebuild the orchestrator inside the worker and run one
orchestrator job on a fresh event loop. Tasks never retry: the orchestrator
records every failure on the request itself.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from homedecor.core.celery_app import celery_app
from homedecor.core.config import settings
from homedecor.core.logging import clear_request_context, get_logger, set_request_context
from homedecor.core.scheduler import CeleryScheduler
from homedecor.pipeline.factory import build_orchestrator, build_redis_client
from homedecor.pipeline.orchestrator import GenerationOrchestrator

logger = get_logger(__name__)


async def _run_with_orchestrator(job: Callable[[GenerationOrchestrator], Awaitable[Any]]) -> Any:
    # Engine and Redis client are bound to this task's event loop
    engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)
    session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    redis_client = build_redis_client()
    try:
        orchestrator = build_orchestrator(
            session_factory,
            scheduler=CeleryScheduler(CELERY_JOBS),
            redis_client=redis_client,
        )
        return await job(orchestrator)
    finally:
        await redis_client.aclose()
        await engine.dispose()


def _run(job: Callable[[GenerationOrchestrator], Awaitable[Any]]) -> Any:
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run_with_orchestrator(job))
    finally:
        loop.close()
        asyncio.set_event_loop(None)


@celery_app.task(
    bind=True,
    name="homedecor.pipeline.tasks.process_request",
    max_retries=0,
    acks_late=True
)
def process_request(self, request_id: str) -> Dict[str, Any]:
    set_request_context(request_id, "pipeline")
    try:
        logger.info("task_process_request_started", celery_task_id=self.request.id)
        request = _run(lambda orchestrator: orchestrator.process_request(request_id))
        status = request.status if request is not None else None
        logger.info("task_process_request_finished", status=status)
        return {"request_id": request_id, "status": status}
    finally:
        clear_request_context()


@celery_app.task(
    bind=True,
    name="homedecor.pipeline.tasks.match_products",
    max_retries=0,
    acks_late=True
)
def match_products(self, request_id: str, image_url: str) -> Dict[str, Any]:
    set_request_context(request_id, "product_matching")
    try:
        matches = _run(lambda orchestrator: orchestrator.match_products(request_id, image_url))
        return {
            "request_id": request_id,
            "matches": [{"product_id": product_id, "score": score} for product_id, score in matches],
        }
    finally:
        clear_request_context()


CELERY_JOBS: Dict[str, Any] = {
    "process_request": process_request,
    "match_products": match_products,
}
