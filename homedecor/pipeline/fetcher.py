"""
Source Image Fetcher

Downloads the room photo the user pointed at. Each failed check raises a
``SourceImageError`` whose message names the check that failed.
"""

from typing import Optional

import httpx

from homedecor.core.exceptions import SourceImageError
from homedecor.core.logging import get_logger
from homedecor.core.metrics import track_stage_latency

logger = get_logger(__name__)


class SourceImageFetcher:

    def __init__(self, timeout: float = 30.0, http_client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self.http_client = http_client

    async def _get(self, url: str) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.get(url, timeout=self.timeout, follow_redirects=True)
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            return await client.get(url)

    async def fetch(self, url: str) -> bytes:
        try:
            with track_stage_latency("fetch"):
                response = await self._get(url)
        except httpx.TimeoutException as e:
            raise SourceImageError(
                f"Failed to download source image: timed out after {self.timeout}s",
                url=url, stage="fetch",
            ) from e
        except httpx.HTTPError as e:
            raise SourceImageError(
                f"Failed to download source image: {e}",
                url=url, stage="fetch",
            ) from e

        if not response.is_success:
            raise SourceImageError(
                f"Failed to download source image: HTTP {response.status_code}",
                url=url, stage="fetch",
            )

        content_type = response.headers.get("content-type", "")
        if not content_type.lower().startswith("image/"):
            raise SourceImageError(
                f"Source URL did not return an image (content type '{content_type or 'missing'}')",
                url=url, stage="fetch",
            )

        if not response.content:
            raise SourceImageError("Source image is empty", url=url, stage="fetch")

        logger.info(
            "source_image_fetched",
            size_bytes=len(response.content),
            content_type=content_type,
        )
        return response.content
