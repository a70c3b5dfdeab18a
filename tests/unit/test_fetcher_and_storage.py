import httpx
import pytest

from homedecor.core.exceptions import SourceImageError, StorageError
from homedecor.core.storage import LocalStorage
from homedecor.pipeline.fetcher import SourceImageFetcher
from tests.conftest import make_png, mock_http_client

PHOTO = make_png(20, 20)


def fetcher_for(response_factory) -> SourceImageFetcher:
    return SourceImageFetcher(timeout=5, http_client=mock_http_client(response_factory))


# =============================================================================
# Source image fetch
# =============================================================================

@pytest.mark.asyncio
async def test_fetch_returns_image_bytes():
    fetcher = fetcher_for(lambda request: httpx.Response(200, content=PHOTO, headers={"content-type": "image/png"}))

    assert await fetcher.fetch("https://photos.test/room.png") == PHOTO


@pytest.mark.asyncio
@pytest.mark.parametrize("response, expected", [
    (httpx.Response(404), "HTTP 404"),
    (httpx.Response(200, content=b"<html></html>", headers={"content-type": "text/html"}), "did not return an image"),
    (httpx.Response(200, content=b"", headers={"content-type": "image/png"}), "empty"),
])
async def test_fetch_checks_are_reported(response, expected):
    fetcher = fetcher_for(lambda request: response)

    with pytest.raises(SourceImageError) as exc_info:
        await fetcher.fetch("https://photos.test/room.png")

    assert expected in exc_info.value.message
    assert exc_info.value.details["url"] == "https://photos.test/room.png"


@pytest.mark.asyncio
async def test_fetch_timeout_is_reported():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(SourceImageError) as exc_info:
        await fetcher_for(handler).fetch("https://photos.test/room.png")

    assert "timed out" in exc_info.value.message


# =============================================================================
# Local storage
# =============================================================================

@pytest.mark.asyncio
async def test_store_returns_servable_url(tmp_path):
    storage = LocalStorage(str(tmp_path), url_prefix="/static/storage")

    url = await storage.store(PHOTO, "result.png", "generated")

    assert url.startswith("/static/storage/generated/")
    assert await storage.exists(url)
    assert (tmp_path / "generated" / url.rsplit("/", 1)[-1]).read_bytes() == PHOTO

    assert await storage.delete(url) is True
    assert await storage.exists(url) is False


@pytest.mark.asyncio
async def test_store_gives_each_object_a_unique_name(tmp_path):
    storage = LocalStorage(str(tmp_path))

    first = await storage.store(PHOTO, "same.png", "generated")
    second = await storage.store(PHOTO, "same.png", "generated")

    assert first != second


@pytest.mark.asyncio
async def test_empty_objects_are_refused(tmp_path):
    with pytest.raises(StorageError):
        await LocalStorage(str(tmp_path)).store(b"", "empty.png")


@pytest.mark.asyncio
async def test_paths_outside_the_root_are_refused(tmp_path):
    storage = LocalStorage(str(tmp_path / "root"))

    with pytest.raises(StorageError):
        await storage.exists("/static/storage/../../etc/passwd")
