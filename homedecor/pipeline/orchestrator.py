"""
Generation Request Orchestrator

Owns the request lifecycle:

    create (Pending) -> schedule -> Processing -> debit -> prompt -> fetch
    -> conform -> [mask] -> generate -> Completed -> match products

Every transition is persisted and mirrored to the per-request log stream.
Any failure after the debit moves the request to Failed with the error
message; nothing is retried here. Mask generation is the one step whose
failure is tolerated: the image is generated without a mask instead.
"""

import asyncio
from typing import List, Optional

from homedecor.core.config import OrchestratorSettings
from homedecor.core.exceptions import InsufficientCreditsError, ValidationError
from homedecor.core.logging import LogContext, get_logger
from homedecor.core.metrics import record_request_finished, record_request_started, track_stage_latency
from homedecor.core.scheduler import BackgroundScheduler
from homedecor.engines.conformance.transformer import ImageConformer
from homedecor.engines.generation.client import ImageGenerationClient
from homedecor.engines.masking.service import MaskGenerationService
from homedecor.modules.billing.services import IBillingService
from homedecor.modules.products.services import IProductMatcher
from homedecor.modules.requests.models import GenerationRequest, LogSeverity, RequestLog, RequestStatus
from homedecor.modules.requests.repositories import GenerationRequestRepository, RequestLogRepository
from homedecor.pipeline.fetcher import SourceImageFetcher
from homedecor.pipeline.prompts import resolve_prompt

logger = get_logger(__name__)

PROCESS_JOB = "process_request"
MATCH_JOB = "match_products"


def _require(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    return value.strip()


class GenerationOrchestrator:

    def __init__(
        self,
        repository: GenerationRequestRepository,
        billing: IBillingService,
        log_sink: RequestLogRepository,
        conformer: ImageConformer,
        mask_generator: MaskGenerationService,
        generation_client: ImageGenerationClient,
        product_matcher: IProductMatcher,
        image_fetcher: SourceImageFetcher,
        scheduler: BackgroundScheduler,
        settings: Optional[OrchestratorSettings] = None,
    ):
        self.repository = repository
        self.billing = billing
        self.log_sink = log_sink
        self.conformer = conformer
        self.mask_generator = mask_generator
        self.generation_client = generation_client
        self.product_matcher = product_matcher
        self.image_fetcher = image_fetcher
        self.scheduler = scheduler
        self.settings = settings or OrchestratorSettings()

    # ==========================================================================
    # Create
    # ==========================================================================

    async def create_and_process(
        self,
        user_id: str,
        style_label: str,
        source_image_url: str,
        custom_prompt: Optional[str] = None,
        use_mask: bool = False,
    ) -> GenerationRequest:
        """Persist a Pending request, schedule its processing and return it."""
        request = GenerationRequest(
            user_id=_require(user_id, "user_id"),
            style_label=_require(style_label, "style_label"),
            source_image_url=_require(source_image_url, "source_image_url"),
            custom_prompt=custom_prompt,
            use_mask=use_mask,
            status=RequestStatus.PENDING.value,
            credits_charged=self.settings.credits_per_request,
        )
        request = await self.repository.create(request)

        with LogContext(request_id=request.id, stage="create"):
            logger.info(
                "request_created",
                user_id=request.user_id,
                style_label=request.style_label,
                use_mask=request.use_mask,
                custom_prompt=bool(custom_prompt and custom_prompt.strip()),
            )

        self.scheduler.submit(PROCESS_JOB, self.process_request, request.id)
        return request

    # ==========================================================================
    # Background Processing
    # ==========================================================================

    async def process_request(self, request_id: str) -> Optional[GenerationRequest]:
        request = await self.repository.get_by_id(request_id)
        if request is None:
            logger.warning("request_not_found", request_id=request_id)
            return None
        if request.status != RequestStatus.PENDING.value:
            logger.info("request_redelivery_ignored", request_id=request_id, status=request.status)
            return request

        with LogContext(request_id=request.id, stage="pipeline") as ctx:
            await self.log_sink.log(request.id, LogSeverity.INFO, "Image request created.")
            request.mark_processing()
            request = await self.repository.update(request)
            record_request_started()
            await self.log_sink.log(request.id, LogSeverity.INFO, "Processing of image request started.")
            logger.info("pipeline_started")

            # Billing: nothing has been taken yet if this fails
            ctx.set_stage("billing")
            try:
                debited = await self.billing.debit(request.user_id, request.credits_charged)
            except Exception as e:
                return await self._fail(request, f"Credit deduction failed: {e}", debited=False, error=e)
            if not debited:
                refused = InsufficientCreditsError("Credit deduction failed: insufficient credits", stage="billing")
                return await self._fail(request, refused.message, debited=False, error=refused)

            mask: Optional[bytes] = None
            try:
                prompt = resolve_prompt(request.style_label, request.custom_prompt)

                ctx.set_stage("fetch")
                source = await self.image_fetcher.fetch(request.source_image_url)

                ctx.set_stage("conformance")
                with track_stage_latency("conformance"):
                    conformed = await asyncio.to_thread(self.conformer.conform, source)

                if request.use_mask:
                    ctx.set_stage("masking")
                    mask = await self._try_generate_mask(request, bytes(conformed.data))

                ctx.set_stage("generation")
                result_url = await self.generation_client.generate(conformed.data, mask, prompt)
            except Exception as e:
                return await self._fail(request, str(e) or type(e).__name__, debited=True, error=e)

            ctx.set_stage("complete")
            request.mask_applied = mask is not None
            request.mark_completed(result_url)
            try:
                request = await self.repository.update(request)
            except Exception as e:
                return await self._fail_unrecorded_completion(request.id, e)
            record_request_finished("completed")

            if request.mask_applied:
                await self.log_sink.log(
                    request.id, LogSeverity.INFO,
                    "Generated image with mask to preserve structural elements."
                )
            await self.log_sink.log(request.id, LogSeverity.INFO, "Image request completed.")
            logger.info("pipeline_completed", result_url=result_url, mask_applied=request.mask_applied)

        self.scheduler.submit(MATCH_JOB, self.match_products, request.id, result_url)
        return request

    async def _try_generate_mask(self, request: GenerationRequest, image: bytes) -> Optional[bytes]:
        try:
            return await self.mask_generator.generate_mask(image)
        except Exception as e:
            logger.warning("mask_generation_failed", error=str(e), error_type=type(e).__name__)
            await self.log_sink.log(
                request.id, LogSeverity.WARNING,
                f"Mask generation failed, proceeding without mask: {e}"
            )
            return None

    async def _fail_unrecorded_completion(self, request_id: str, error: Exception) -> Optional[GenerationRequest]:
        """The result exists but Completed was not saved: record Failed from a fresh read."""
        logger.error("completion_write_failed", error=str(error), error_type=type(error).__name__)

        current = await self.repository.get_by_id(request_id)
        if current is None or current.is_terminal:
            return current
        return await self._fail(current, f"Failed to record completion: {error}", debited=True, error=error)

    async def _fail(
        self,
        request: GenerationRequest,
        message: str,
        debited: bool,
        error: Optional[Exception] = None,
    ) -> GenerationRequest:
        request.mark_failed(message)

        if debited and self.settings.refund_on_failure:
            try:
                await self.billing.refund(request.user_id, request.credits_charged)
                request.credits_refunded = True
            except Exception as e:
                logger.error("credit_refund_failed", error=str(e), amount=request.credits_charged)

        try:
            request = await self.repository.update(request)
        except Exception as e:
            logger.error(
                "failure_write_failed",
                error=str(e),
                error_type=type(e).__name__,
                pipeline_error=message,
            )
            await self.log_sink.log(
                request.id, LogSeverity.ERROR,
                f"Image request failed but its status could not be saved: {message}"
            )
            raise
        record_request_finished("failed")

        logger.error(
            "pipeline_failed",
            error=message,
            error_type=type(error).__name__ if error else None,
            credits_refunded=request.credits_refunded,
        )
        await self.log_sink.log(request.id, LogSeverity.ERROR, f"Image request failed: {message}")
        if request.credits_refunded:
            await self.log_sink.log(
                request.id, LogSeverity.INFO,
                f"Refunded {request.credits_charged} credit(s)."
            )
        return request

    # ==========================================================================
    # Downstream Product Matching
    # ==========================================================================

    async def match_products(self, request_id: str, image_url: str) -> List[tuple]:
        with LogContext(request_id=request_id, stage="product_matching"):
            try:
                matches = await self.product_matcher.detect_and_match(image_url)
            except Exception as e:
                logger.warning("product_matching_failed", error=str(e), error_type=type(e).__name__)
                await self.log_sink.log(request_id, LogSeverity.WARNING, f"Product matching failed: {e}")
                return []

            logger.info("product_matching_completed", matches=len(matches))
            await self.log_sink.log(request_id, LogSeverity.INFO, f"Matched {len(matches)} product(s).")
            return matches

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get_by_id(self, request_id: str) -> Optional[GenerationRequest]:
        return await self.repository.get_by_id(request_id)

    async def get_history(self, user_id: str, limit: int = 10) -> List[GenerationRequest]:
        return await self.repository.get_by_user(user_id, limit)

    async def get_logs(self, request_id: str) -> List[RequestLog]:
        return await self.log_sink.get_logs(request_id)
