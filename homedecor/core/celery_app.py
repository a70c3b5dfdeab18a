"""
Celery Application Configuration

Used when PIPELINE_BACKEND=celery. Configures:
- Separate queues for the generation pipeline and product matching
- No automatic retries (a failed request stays Failed)
- Result backend for task tracking
"""

from celery import Celery
from kombu import Queue

from homedecor.core.config import settings

# Create Celery app
celery_app = Celery(
    "homedecor_pipeline",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        "homedecor.pipeline.tasks",
    ]
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task tracking
    task_track_started=True,
    task_time_limit=300,  # 5 minute hard limit
    task_soft_time_limit=270,

    # Result expiration
    result_expires=86400,  # 24 hours

    # Worker settings
    worker_prefetch_multiplier=1,

    # Queue definitions
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("pipeline_queue", routing_key="pipeline.#"),
        Queue("matching_queue", routing_key="matching.#"),
    ),
    task_default_queue="default",

    # Task routing
    task_routes={
        "homedecor.pipeline.tasks.process_request": {"queue": "pipeline_queue"},
        "homedecor.pipeline.tasks.match_products": {"queue": "matching_queue"},
    },

    # Late acknowledgment; a redelivered request that already left Pending is a no-op
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)
