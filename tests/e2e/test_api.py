from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from homedecor.api.dependencies import get_mask_service, get_orchestrator
from homedecor.core.config import MaskSettings
from homedecor.core.scheduler import AsyncioScheduler
from homedecor.engines.conformance.transformer import ImageConformer
from homedecor.engines.masking.service import MaskGenerationService
from homedecor.main import app
from homedecor.modules.billing.services import MockBillingService
from homedecor.modules.products.services import MockProductMatcherService
from homedecor.modules.requests.repositories import GenerationRequestRepository, RequestLogRepository
from homedecor.pipeline.fetcher import SourceImageFetcher
from homedecor.pipeline.orchestrator import GenerationOrchestrator
from tests.conftest import make_png, mock_http_client

ROOM_URL = "https://photos.test/room.png"
HEADERS = {"X-User-Id": "user-1"}


def serve_photo(request: httpx.Request) -> httpx.Response:
    if str(request.url) == ROOM_URL:
        return httpx.Response(200, content=make_png(96, 64), headers={"content-type": "image/png"})
    return httpx.Response(404)


@pytest_asyncio.fixture
async def pipeline(session_factory):
    scheduler = AsyncioScheduler(max_concurrency=2)
    generation_client = AsyncMock()
    generation_client.generate.return_value = "/static/storage/generated/result.png"
    mask_service = MaskGenerationService(MaskSettings())

    orchestrator = GenerationOrchestrator(
        repository=GenerationRequestRepository(session_factory),
        billing=MockBillingService(starting_credits=10),
        log_sink=RequestLogRepository(session_factory),
        conformer=ImageConformer(),
        mask_generator=mask_service,
        generation_client=generation_client,
        product_matcher=MockProductMatcherService(),
        image_fetcher=SourceImageFetcher(http_client=mock_http_client(serve_photo)),
        scheduler=scheduler,
    )
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_mask_service] = lambda: mask_service
    yield orchestrator
    await scheduler.shutdown()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(pipeline):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_request_lifecycle(client, pipeline):
    response = await client.post(
        "/api/v1/image-requests",
        json={"style_label": "Modern", "source_image_url": ROOM_URL, "use_mask": True},
        headers=HEADERS,
    )
    assert response.status_code == 202
    created = response.json()
    assert created["status"] == "Pending"

    await pipeline.scheduler.wait_idle()

    response = await client.get(f"/api/v1/image-requests/{created['id']}")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "Completed"
    assert data["result_url"] == "/static/storage/generated/result.png"
    assert data["mask_applied"] is True

    response = await client.get(f"/api/v1/image-requests/{created['id']}/logs")
    assert response.status_code == 200
    messages = [entry["message"] for entry in response.json()]
    assert messages[0] == "Image request created."
    assert "Image request completed." in messages

    response = await client.get("/api/v1/history", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["count"] == 1


@pytest.mark.asyncio
async def test_missing_user_header_is_rejected(client):
    response = await client.post(
        "/api/v1/image-requests",
        json={"style_label": "Modern", "source_image_url": ROOM_URL},
    )
    assert response.status_code == 400
    assert "X-User-Id" in response.json()["error"]


@pytest.mark.asyncio
async def test_invalid_body_is_rejected(client):
    response = await client.post(
        "/api/v1/image-requests",
        json={"style_label": "", "source_image_url": ROOM_URL},
        headers=HEADERS,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_request_is_404(client):
    assert (await client.get("/api/v1/image-requests/nope")).status_code == 404
    assert (await client.get("/api/v1/image-requests/nope/logs")).status_code == 404


@pytest.mark.asyncio
async def test_styles_are_listed(client):
    response = await client.get("/api/v1/styles")
    assert response.status_code == 200
    labels = [style["label"] for style in response.json()]
    assert "Scandinavian" in labels


@pytest.mark.asyncio
async def test_mask_endpoint_returns_png(client):
    response = await client.post(
        "/api/v1/masks/generate",
        files={"image": ("room.png", make_png(80, 60), "image/png")},
        data={"mask_type": "demo", "multi_pass": "true"},
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content.startswith(b"\x89PNG")


@pytest.mark.asyncio
async def test_mask_endpoint_rejects_unknown_type(client):
    response = await client.post(
        "/api/v1/masks/generate",
        files={"image": ("room.png", make_png(80, 60), "image/png")},
        data={"mask_type": "magic"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_mask_status(client):
    response = await client.get("/api/v1/masks/status")
    assert response.status_code == 200
    assert response.json()["segmentation_configured"] is False


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    response = await client.get("/api/v1/metrics")
    assert response.status_code == 200
    assert "homedecor_http_requests_total" in response.text
