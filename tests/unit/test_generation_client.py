import base64

import httpx
import pytest

from homedecor.core.config import GenerationSettings
from homedecor.core.exceptions import (
    AuthError,
    CircuitBreaker,
    InvalidRequestError,
    RateLimitError,
    TransientNetworkError,
    UnknownGenerationError,
    UpstreamError,
    ValidationError,
)
from homedecor.core.storage import LocalStorage
from homedecor.engines.generation.client import ImageGenerationClient
from tests.conftest import make_png, mock_http_client

API_URL = "https://images.test/v1/images/edits"
RESULT_URL = "https://cdn.test/generated/result.png"
RESULT_PNG = make_png(16, 16, (10, 200, 10))


def make_client(handler, tmp_path, circuit=None, **settings) -> ImageGenerationClient:
    return ImageGenerationClient(
        GenerationSettings(api_url=API_URL, api_key="sk-test", **settings),
        LocalStorage(str(tmp_path), url_prefix="/static/storage"),
        http_client=mock_http_client(handler),
        circuit=circuit or CircuitBreaker("generation-test", failure_threshold=5),
    )


def happy_handler(calls, head_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.method == "POST":
            return httpx.Response(200, json={"created": 1, "data": [{"url": RESULT_URL}]})
        if request.method == "HEAD":
            return httpx.Response(head_status)
        return httpx.Response(200, content=RESULT_PNG, headers={"content-type": "image/png"})
    return handler


@pytest.mark.asyncio
async def test_generate_downloads_and_stores_result(tmp_path):
    calls = []
    client = make_client(happy_handler(calls), tmp_path)

    url = await client.generate(make_png(), b"mask-bytes", "Make it Modern")

    assert url.startswith("/static/storage/generated/")
    assert url.endswith(".png")
    stored = tmp_path / "generated" / url.rsplit("/", 1)[-1]
    assert stored.read_bytes() == RESULT_PNG

    assert [c.method for c in calls] == ["POST", "HEAD", "GET"]
    post = calls[0]
    assert str(post.url) == API_URL
    assert post.headers["Authorization"] == "Bearer sk-test"
    assert b'name="image"' in post.content
    assert b'name="mask"' in post.content
    assert b"Make it Modern" in post.content
    assert b"dall-e-2" in post.content


@pytest.mark.asyncio
async def test_mask_part_is_omitted_without_mask(tmp_path):
    calls = []
    client = make_client(happy_handler(calls), tmp_path)

    await client.generate(make_png(), None, "Coastal")

    assert b'name="mask"' not in calls[0].content


@pytest.mark.asyncio
async def test_head_not_allowed_still_downloads(tmp_path):
    calls = []
    client = make_client(happy_handler(calls, head_status=405), tmp_path)

    url = await client.generate(make_png(), None, "Coastal")

    assert url.startswith("/static/storage/generated/")


@pytest.mark.asyncio
@pytest.mark.parametrize("head_status", [404, 500])
async def test_unreachable_result_is_not_downloaded(tmp_path, head_status):
    calls = []
    client = make_client(happy_handler(calls, head_status=head_status), tmp_path)

    with pytest.raises(UpstreamError) as exc_info:
        await client.generate(make_png(), None, "Coastal")

    assert exc_info.value.http_status == head_status
    assert "not reachable" in exc_info.value.message
    assert [c.method for c in calls] == ["POST", "HEAD"]
    assert not (tmp_path / "generated").exists()


@pytest.mark.asyncio
async def test_b64_result_is_decoded(tmp_path):
    def handler(request):
        return httpx.Response(200, json={"data": [{"b64_json": base64.b64encode(RESULT_PNG).decode()}]})

    url = await make_client(handler, tmp_path).generate(make_png(), None, "Bohemian")

    assert (tmp_path / "generated" / url.rsplit("/", 1)[-1]).read_bytes() == RESULT_PNG


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code, error_type", [
    (400, InvalidRequestError),
    (401, AuthError),
    (429, RateLimitError),
    (500, UpstreamError),
    (503, UpstreamError),
    (418, UnknownGenerationError),
])
async def test_error_statuses_are_classified(tmp_path, status_code, error_type):
    def handler(request):
        return httpx.Response(status_code, json={"error": {"message": "nope"}})

    with pytest.raises(error_type) as exc_info:
        await make_client(handler, tmp_path).generate(make_png(), None, "Modern")

    assert exc_info.value.http_status == status_code
    assert "nope" in exc_info.value.message


@pytest.mark.asyncio
async def test_timeout_raises_transient_error(tmp_path):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransientNetworkError):
        await make_client(handler, tmp_path).generate(make_png(), None, "Modern")


@pytest.mark.asyncio
async def test_empty_result_list_is_unknown_error(tmp_path):
    def handler(request):
        return httpx.Response(200, json={"data": []})

    with pytest.raises(UnknownGenerationError):
        await make_client(handler, tmp_path).generate(make_png(), None, "Modern")


@pytest.mark.asyncio
async def test_failed_download_raises_upstream_error(tmp_path):
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"data": [{"url": RESULT_URL}]})
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(404)

    with pytest.raises(UpstreamError):
        await make_client(handler, tmp_path).generate(make_png(), None, "Modern")


@pytest.mark.asyncio
@pytest.mark.parametrize("image, prompt", [(b"", "Modern"), (b"png", "   ")])
async def test_missing_inputs_raise_validation_error(tmp_path, image, prompt):
    def handler(request):
        raise AssertionError("API must not be called")

    with pytest.raises(ValidationError):
        await make_client(handler, tmp_path).generate(image, None, prompt)


@pytest.mark.asyncio
async def test_open_circuit_fails_fast(tmp_path):
    circuit = CircuitBreaker("generation-test", failure_threshold=2, recovery_timeout=600)
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="overloaded")

    client = make_client(handler, tmp_path, circuit=circuit)
    for _ in range(2):
        with pytest.raises(UpstreamError):
            await client.generate(make_png(), None, "Modern")

    with pytest.raises(UpstreamError) as exc_info:
        await client.generate(make_png(), None, "Modern")

    assert "circuit breaker open" in exc_info.value.message
    assert len(calls) == 2
