"""
Background Job Scheduling

``create_and_process`` must return before the pipeline runs, so pipeline
work is handed to a ``BackgroundScheduler``:

- ``AsyncioScheduler``: in-process asyncio tasks, bounded by a semaphore
  so a burst of requests cannot start unbounded concurrent pipelines.
- ``CeleryScheduler``: dispatches the job to a Celery worker by name.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from homedecor.core.logging import get_logger

logger = get_logger(__name__)

Job = Callable[..., Awaitable[Any]]


class BackgroundScheduler(ABC):
    """Fire-and-forget job submission."""

    @abstractmethod
    def submit(self, job_name: str, func: Job, *args: Any) -> None:
        """Schedule ``func(*args)``; must not wait for it to run."""
        pass


class AsyncioScheduler(BackgroundScheduler):
    """Runs jobs as tasks on the running event loop."""

    def __init__(self, max_concurrency: int = 4):
        self.max_concurrency = max(1, max_concurrency)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the loop that runs the jobs
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
        return self._semaphore

    def submit(self, job_name: str, func: Job, *args: Any) -> None:
        task = asyncio.get_running_loop().create_task(
            self._run(job_name, func, *args),
            name=f"{job_name}:{args[0] if args else ''}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("job_submitted", job_name=job_name, pending=len(self._tasks))

    async def _run(self, job_name: str, func: Job, *args: Any) -> None:
        async with self._get_semaphore():
            try:
                await func(*args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(
                    "background_job_failed",
                    job_name=job_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every submitted job (and any they submit) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)


class CeleryScheduler(BackgroundScheduler):
    """
    Dispatches jobs to Celery workers.

    Only the job name and its (JSON-serializable) arguments cross the broker;
    the worker rebuilds its own orchestrator and runs the job there.
    """

    def __init__(self, tasks: Optional[Dict[str, Any]] = None):
        if tasks is None:
            from homedecor.pipeline.tasks import CELERY_JOBS
            tasks = CELERY_JOBS
        self.tasks = tasks

    def submit(self, job_name: str, func: Job, *args: Any) -> None:
        task = self.tasks.get(job_name)
        if task is None:
            raise KeyError(f"No Celery task registered for job '{job_name}'")
        result = task.delay(*args)
        logger.info("job_dispatched", job_name=job_name, celery_task_id=result.id)
