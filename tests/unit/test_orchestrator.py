from unittest.mock import AsyncMock

import httpx
import pytest

from homedecor.core.config import OrchestratorSettings
from homedecor.core.exceptions import TransientNetworkError, UpstreamError, ValidationError
from homedecor.core.scheduler import AsyncioScheduler
from homedecor.engines.conformance.transformer import ImageConformer
from homedecor.modules.billing.services import MockBillingService
from homedecor.modules.products.services import MockProductMatcherService
from homedecor.modules.requests.models import RequestStatus
from homedecor.modules.requests.repositories import GenerationRequestRepository, RequestLogRepository
from homedecor.pipeline.fetcher import SourceImageFetcher
from homedecor.pipeline.orchestrator import MATCH_JOB, PROCESS_JOB, GenerationOrchestrator
from homedecor.pipeline.prompts import build_fallback_prompt
from tests.conftest import RecordingScheduler, make_png, mock_http_client

ROOM_URL = "https://photos.test/room.png"
MISSING_URL = "https://photos.test/missing.png"
RESULT_URL = "/static/storage/generated/result.png"


class FlakyRepository(GenerationRequestRepository):
    """Raises once on the first write that moves a request to one of ``fail_on``."""

    def __init__(self, session_factory, fail_on):
        super().__init__(session_factory)
        self.fail_on = set(fail_on)
        self.failed_writes = []

    async def update(self, request):
        if request.status in self.fail_on:
            self.fail_on.discard(request.status)
            self.failed_writes.append(request.status)
            raise ConnectionError("db write failed")
        return await super().update(request)


class Harness:
    """Orchestrator wired to a real sqlite store and fake external services."""

    def __init__(self, session_factory, starting_credits=10, refund_on_failure=False, scheduler=None, repository=None):
        self.fetches = []
        self.billing = MockBillingService(starting_credits=starting_credits)
        self.mask_generator = AsyncMock()
        self.mask_generator.generate_mask.return_value = b"mask-png"
        self.generation_client = AsyncMock()
        self.generation_client.generate.return_value = RESULT_URL
        self.product_matcher = MockProductMatcherService()
        self.scheduler = scheduler or RecordingScheduler()
        self.orchestrator = GenerationOrchestrator(
            repository=repository or GenerationRequestRepository(session_factory),
            billing=self.billing,
            log_sink=RequestLogRepository(session_factory),
            conformer=ImageConformer(),
            mask_generator=self.mask_generator,
            generation_client=self.generation_client,
            product_matcher=self.product_matcher,
            image_fetcher=SourceImageFetcher(http_client=mock_http_client(self._serve_photo)),
            scheduler=self.scheduler,
            settings=OrchestratorSettings(refund_on_failure=refund_on_failure),
        )

    def _serve_photo(self, request: httpx.Request) -> httpx.Response:
        self.fetches.append(str(request.url))
        if str(request.url) == ROOM_URL:
            return httpx.Response(200, content=make_png(96, 64), headers={"content-type": "image/png"})
        return httpx.Response(404)

    async def create(self, **kwargs):
        params = {"user_id": "user-1", "style_label": "Modern", "source_image_url": ROOM_URL}
        params.update(kwargs)
        return await self.orchestrator.create_and_process(**params)

    async def run(self, **kwargs):
        request = await self.create(**kwargs)
        return await self.orchestrator.process_request(request.id)

    async def messages(self, request_id):
        return [(entry.severity, entry.message) for entry in await self.orchestrator.get_logs(request_id)]


# =============================================================================
# Create
# =============================================================================

@pytest.mark.asyncio
async def test_create_returns_pending_and_schedules_processing(session_factory):
    harness = Harness(session_factory)

    request = await harness.create()

    assert request.status == RequestStatus.PENDING.value
    assert request.credits_charged == 1
    assert harness.scheduler.jobs[0][0] == PROCESS_JOB
    assert harness.scheduler.jobs[0][2] == (request.id,)
    assert await harness.messages(request.id) == []
    harness.generation_client.generate.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["user_id", "style_label", "source_image_url"])
async def test_create_rejects_blank_fields_without_side_effects(session_factory, field):
    harness = Harness(session_factory)

    with pytest.raises(ValidationError) as exc_info:
        await harness.create(**{field: "  "})

    assert field in exc_info.value.message
    assert harness.scheduler.jobs == []
    assert await harness.orchestrator.repository.get_recent() == []
    assert await harness.billing.get_balance("user-1") == 10


# =============================================================================
# Processing
# =============================================================================

@pytest.mark.asyncio
async def test_happy_path_completes_and_debits_one_credit(session_factory):
    harness = Harness(session_factory)

    result = await harness.run()

    assert result.status == RequestStatus.COMPLETED.value
    assert result.result_url == RESULT_URL
    assert result.error_message is None
    assert result.mask_applied is False
    assert await harness.billing.get_balance("user-1") == 9

    image, mask, prompt = harness.generation_client.generate.call_args.args
    assert image.startswith(b"\x89PNG")
    assert mask is None
    assert prompt == build_fallback_prompt("Modern")
    harness.mask_generator.generate_mask.assert_not_called()

    assert await harness.messages(result.id) == [
        ("Information", "Image request created."),
        ("Information", "Processing of image request started."),
        ("Information", "Image request completed."),
    ]
    assert harness.scheduler.names == [PROCESS_JOB, MATCH_JOB]
    assert harness.scheduler.jobs[1][2] == (result.id, RESULT_URL)

    stored = await harness.orchestrator.get_by_id(result.id)
    assert stored.status == RequestStatus.COMPLETED.value
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_custom_prompt_is_sent_verbatim(session_factory):
    harness = Harness(session_factory)

    await harness.run(custom_prompt="Turn it into a jungle lounge")

    assert harness.generation_client.generate.call_args.args[2] == "Turn it into a jungle lounge"


@pytest.mark.asyncio
async def test_mask_is_passed_to_generation(session_factory):
    harness = Harness(session_factory)

    result = await harness.run(use_mask=True)

    assert result.status == RequestStatus.COMPLETED.value
    assert result.mask_applied is True
    assert harness.generation_client.generate.call_args.args[1] == b"mask-png"
    assert ("Information", "Generated image with mask to preserve structural elements.") in \
        await harness.messages(result.id)


@pytest.mark.asyncio
async def test_mask_failure_degrades_to_unmasked_generation(session_factory):
    harness = Harness(session_factory)
    harness.mask_generator.generate_mask.side_effect = TransientNetworkError(
        "Segmentation service timed out after 20.0s", service="segmentation"
    )

    result = await harness.run(use_mask=True)

    assert result.status == RequestStatus.COMPLETED.value
    assert result.mask_applied is False
    assert harness.generation_client.generate.call_args.args[1] is None

    warnings = [m for s, m in await harness.messages(result.id) if s == "Warning"]
    assert len(warnings) == 1
    assert warnings[0].startswith("Mask generation failed, proceeding without mask:")


@pytest.mark.asyncio
async def test_insufficient_credits_fails_before_any_external_call(session_factory):
    harness = Harness(session_factory, starting_credits=0)

    result = await harness.run()

    assert result.status == RequestStatus.FAILED.value
    assert "credit" in result.error_message.lower()
    assert result.result_url is None
    assert harness.fetches == []
    harness.generation_client.generate.assert_not_called()
    assert harness.scheduler.names == [PROCESS_JOB]


@pytest.mark.asyncio
async def test_fetch_failure_keeps_credits_debited(session_factory):
    harness = Harness(session_factory)

    result = await harness.run(source_image_url=MISSING_URL)

    assert result.status == RequestStatus.FAILED.value
    assert "404" in result.error_message
    assert result.credits_refunded is False
    assert await harness.billing.get_balance("user-1") == 9
    harness.generation_client.generate.assert_not_called()

    logs = await harness.messages(result.id)
    assert logs[-1][0] == "Error"
    assert logs[-1][1].startswith("Image request failed:")


@pytest.mark.asyncio
async def test_refund_on_failure_returns_credits(session_factory):
    harness = Harness(session_factory, refund_on_failure=True)
    harness.generation_client.generate.side_effect = UpstreamError(
        "Generation API returned HTTP 503: overloaded", service="generation", http_status=503
    )

    result = await harness.run()

    assert result.status == RequestStatus.FAILED.value
    assert "503" in result.error_message
    assert result.credits_refunded is True
    assert await harness.billing.get_balance("user-1") == 10
    assert ("Information", "Refunded 1 credit(s).") in await harness.messages(result.id)


@pytest.mark.asyncio
async def test_no_refund_when_debit_never_happened(session_factory):
    harness = Harness(session_factory, starting_credits=0, refund_on_failure=True)

    result = await harness.run()

    assert result.credits_refunded is False
    assert await harness.billing.get_balance("user-1") == 0


@pytest.mark.asyncio
async def test_redelivered_job_is_a_no_op(session_factory):
    harness = Harness(session_factory)
    request = await harness.create()

    first = await harness.orchestrator.process_request(request.id)
    second = await harness.orchestrator.process_request(request.id)

    assert first.status == second.status == RequestStatus.COMPLETED.value
    assert harness.generation_client.generate.await_count == 1
    assert await harness.billing.get_balance("user-1") == 9


@pytest.mark.asyncio
async def test_unsaved_completion_is_recorded_as_failed(session_factory):
    repository = FlakyRepository(session_factory, fail_on=[RequestStatus.COMPLETED.value])
    harness = Harness(session_factory, repository=repository)

    result = await harness.run()

    assert repository.failed_writes == [RequestStatus.COMPLETED.value]
    assert result.status == RequestStatus.FAILED.value
    assert result.error_message == "Failed to record completion: db write failed"
    stored = await harness.orchestrator.get_by_id(result.id)
    assert stored.status == RequestStatus.FAILED.value
    assert stored.result_url is None
    assert harness.scheduler.names == [PROCESS_JOB]

    redelivered = await harness.orchestrator.process_request(result.id)
    assert redelivered.status == RequestStatus.FAILED.value
    assert harness.generation_client.generate.await_count == 1


@pytest.mark.asyncio
async def test_unsaved_failure_is_logged_and_raised(session_factory):
    repository = FlakyRepository(session_factory, fail_on=[RequestStatus.FAILED.value])
    harness = Harness(session_factory, repository=repository)
    request = await harness.create(source_image_url=MISSING_URL)

    with pytest.raises(ConnectionError):
        await harness.orchestrator.process_request(request.id)

    logs = await harness.messages(request.id)
    assert logs[-1][0] == "Error"
    assert logs[-1][1].startswith("Image request failed but its status could not be saved:")
    assert "404" in logs[-1][1]


@pytest.mark.asyncio
async def test_created_event_is_written_once_by_the_job(session_factory):
    harness = Harness(session_factory)
    request = await harness.create()

    await harness.orchestrator.process_request(request.id)
    await harness.orchestrator.process_request(request.id)

    messages = [m for _, m in await harness.messages(request.id)]
    assert messages.count("Image request created.") == 1
    assert messages[0] == "Image request created."


@pytest.mark.asyncio
async def test_unknown_request_id_is_ignored(session_factory):
    harness = Harness(session_factory)

    assert await harness.orchestrator.process_request("does-not-exist") is None


# =============================================================================
# Product matching
# =============================================================================

@pytest.mark.asyncio
async def test_match_products_returns_ranked_matches(session_factory):
    harness = Harness(session_factory)
    result = await harness.run()

    matches = await harness.orchestrator.match_products(result.id, result.result_url)

    assert matches[0] == ("mock-sofa-001", 0.92)
    assert len(matches) == 5
    assert ("Information", "Matched 5 product(s).") in await harness.messages(result.id)


@pytest.mark.asyncio
async def test_match_products_failure_is_swallowed(session_factory):
    harness = Harness(session_factory)
    result = await harness.run()
    harness.orchestrator.product_matcher = AsyncMock()
    harness.orchestrator.product_matcher.detect_and_match.side_effect = RuntimeError("detector offline")

    matches = await harness.orchestrator.match_products(result.id, result.result_url)

    assert matches == []
    stored = await harness.orchestrator.get_by_id(result.id)
    assert stored.status == RequestStatus.COMPLETED.value
    assert ("Warning", "Product matching failed: detector offline") in await harness.messages(result.id)


# =============================================================================
# Background execution
# =============================================================================

@pytest.mark.asyncio
async def test_asyncio_scheduler_runs_the_whole_pipeline(session_factory):
    scheduler = AsyncioScheduler(max_concurrency=2)
    harness = Harness(session_factory, scheduler=scheduler)

    requests = [await harness.create(user_id=f"user-{i}") for i in range(3)]
    await scheduler.wait_idle()

    for request in requests:
        stored = await harness.orchestrator.get_by_id(request.id)
        assert stored.status == RequestStatus.COMPLETED.value
        assert ("Information", "Matched 5 product(s).") in await harness.messages(request.id)

    history = await harness.orchestrator.get_history("user-1")
    assert [r.id for r in history] == [requests[1].id]
