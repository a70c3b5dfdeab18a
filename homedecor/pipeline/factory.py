"""
Component Wiring

Builds the orchestrator and its collaborators from ``settings``. The API
process and Celery workers both go through ``build_orchestrator`` so they
run the same pipeline with the same configuration.
"""

from typing import Optional

import redis.asyncio as redis

from homedecor.core.config import Settings, settings as default_settings
from homedecor.core.logging import get_logger
from homedecor.core.scheduler import AsyncioScheduler, BackgroundScheduler, CeleryScheduler
from homedecor.core.storage import IStorage, StorageFactory
from homedecor.engines.conformance.transformer import ImageConformer
from homedecor.engines.generation.client import ImageGenerationClient
from homedecor.engines.masking.cache import MaskCacheRepository
from homedecor.engines.masking.segmentation import SegmentationClient
from homedecor.engines.masking.service import MaskGenerationService
from homedecor.modules.billing.services import IBillingService, MockBillingService
from homedecor.modules.products.services import MockProductMatcherService
from homedecor.modules.requests.repositories import (
    GenerationRequestRepository,
    RequestLogRepository,
    SessionFactory,
)
from homedecor.pipeline.fetcher import SourceImageFetcher
from homedecor.pipeline.orchestrator import GenerationOrchestrator

logger = get_logger(__name__)

_billing: Optional[IBillingService] = None


def get_billing_service(config: Settings = default_settings) -> IBillingService:
    """Process-wide billing service (balances must survive between requests)."""
    global _billing
    if _billing is None:
        _billing = MockBillingService(starting_credits=config.MOCK_STARTING_CREDITS)
    return _billing


def build_redis_client(config: Settings = default_settings) -> redis.Redis:
    return redis.from_url(config.REDIS_URL, decode_responses=True)


def build_scheduler(config: Settings = default_settings) -> BackgroundScheduler:
    backend = config.PIPELINE_BACKEND.lower()
    if backend == "celery":
        return CeleryScheduler()
    if backend != "asyncio":
        raise ValueError(f"Unknown PIPELINE_BACKEND '{config.PIPELINE_BACKEND}'")
    return AsyncioScheduler(max_concurrency=config.orchestrator_settings().max_concurrent_pipelines)


def build_mask_service(
    config: Settings = default_settings,
    redis_client: Optional[redis.Redis] = None,
) -> MaskGenerationService:
    mask_settings = config.mask_settings()
    cache = None
    if redis_client is not None:
        cache = MaskCacheRepository(redis_client, ttl=mask_settings.cache_ttl_seconds)

    segmentation_client = None
    if mask_settings.segmentation_url:
        segmentation_client = SegmentationClient(mask_settings)
    elif mask_settings.segmentation_enabled:
        logger.warning("segmentation_enabled_without_url", message="Heuristic masks will be used")

    return MaskGenerationService(mask_settings, cache=cache, segmentation_client=segmentation_client)


def build_orchestrator(
    session_factory: SessionFactory,
    config: Settings = default_settings,
    scheduler: Optional[BackgroundScheduler] = None,
    redis_client: Optional[redis.Redis] = None,
    storage: Optional[IStorage] = None,
) -> GenerationOrchestrator:
    orchestrator_settings = config.orchestrator_settings()
    storage = storage or StorageFactory.get_storage()

    return GenerationOrchestrator(
        repository=GenerationRequestRepository(session_factory),
        billing=get_billing_service(config),
        log_sink=RequestLogRepository(session_factory),
        conformer=ImageConformer(config.conformance_settings()),
        mask_generator=build_mask_service(config, redis_client),
        generation_client=ImageGenerationClient(config.generation_settings(), storage),
        product_matcher=MockProductMatcherService(),
        image_fetcher=SourceImageFetcher(timeout=orchestrator_settings.fetch_timeout),
        scheduler=scheduler or build_scheduler(config),
        settings=orchestrator_settings,
    )
