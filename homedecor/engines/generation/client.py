"""
Image Generation Client

One call to the external image edit API per request: multipart upload of the
conformed room image, the optional mask and the prompt. The returned image is
downloaded (or decoded) and persisted through ``IStorage``; the storage URL is
what the pipeline records as the request result.

No retries happen here. Every failure is classified and raised once.
"""

import base64
import binascii
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import httpx
from pydantic import ValidationError as SchemaValidationError

from homedecor.core.config import GenerationSettings
from homedecor.core.exceptions import (
    AuthError,
    CircuitBreaker,
    CircuitBreakerOpenError,
    InvalidRequestError,
    RateLimitError,
    StorageError,
    TransientNetworkError,
    UnknownGenerationError,
    UpstreamError,
    ValidationError,
    get_circuit_breaker,
)
from homedecor.core.logging import get_logger
from homedecor.core.metrics import record_generation_call, track_stage_latency
from homedecor.core.storage import IStorage
from homedecor.engines.generation.schemas import GenerationResponse

logger = get_logger(__name__)

SERVICE = "generation"
RESULT_CATEGORY = "generated"


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from an API error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.text[:500]


class ImageGenerationClient:

    def __init__(
        self,
        settings: GenerationSettings,
        storage: IStorage,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit: Optional[CircuitBreaker] = None,
    ):
        self.settings = settings
        self.storage = storage
        self.http_client = http_client
        self.circuit = circuit or get_circuit_breaker(SERVICE)

    @asynccontextmanager
    async def _client(self, timeout: float):
        if self.http_client is not None:
            yield self.http_client
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                yield client

    # ==========================================================================
    # Status Classification
    # ==========================================================================

    def _raise_for_status(self, response: httpx.Response):
        status = response.status_code
        if response.is_success:
            return

        detail = _error_detail(response)
        message = f"Generation API returned HTTP {status}: {detail}"

        if status == 401:
            raise AuthError(message, service=SERVICE, http_status=status)
        if status == 429:
            self.circuit.record_failure()
            raise RateLimitError(message, service=SERVICE, http_status=status)
        if status == 400:
            raise InvalidRequestError(message, service=SERVICE, http_status=status)
        if status >= 500:
            self.circuit.record_failure()
            raise UpstreamError(message, service=SERVICE, http_status=status)
        raise UnknownGenerationError(message, service=SERVICE, http_status=status)

    # ==========================================================================
    # Generate
    # ==========================================================================

    async def generate(self, image: bytes, mask: Optional[bytes], prompt: str) -> str:
        """Generate a redecorated image and return its storage URL."""
        if not image:
            raise ValidationError("Image data is required for generation", stage="generation")
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt is required for generation", stage="generation")

        if not self.circuit.can_execute():
            record_generation_call("circuit_open")
            raise CircuitBreakerOpenError(SERVICE, stage="generation")

        files = {"image": ("image.png", image, "image/png")}
        if mask:
            files["mask"] = ("mask.png", mask, "image/png")
        data = {
            "prompt": prompt,
            "model": self.settings.model,
            "size": self.settings.size,
            "n": "1",
            "response_format": "url",
        }
        headers = {}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"

        start_time = datetime.utcnow()
        logger.info(
            "generation_api_call_started",
            image_bytes=len(image),
            mask_attached=bool(mask),
            model=self.settings.model,
        )

        try:
            with track_stage_latency("generation_api"):
                async with self._client(self.settings.timeout) as client:
                    response = await client.post(
                        self.settings.api_url,
                        data=data,
                        files=files,
                        headers=headers,
                        timeout=self.settings.timeout,
                    )
        except httpx.TimeoutException as e:
            self.circuit.record_failure(e)
            record_generation_call("timeout")
            raise TransientNetworkError(
                f"Generation API timed out after {self.settings.timeout}s",
                service=SERVICE,
            ) from e
        except httpx.TransportError as e:
            self.circuit.record_failure(e)
            record_generation_call("transport_error")
            raise TransientNetworkError(f"Generation API unreachable: {e}", service=SERVICE) from e

        record_generation_call(
            "success" if response.is_success else "error",
            http_status=response.status_code,
        )
        self._raise_for_status(response)

        try:
            payload = GenerationResponse.model_validate(response.json())
        except (ValueError, SchemaValidationError) as e:
            raise UnknownGenerationError(
                f"Malformed generation response: {e}",
                service=SERVICE,
                http_status=response.status_code,
            ) from e

        self.circuit.record_success()
        result = payload.data[0]

        if result.url:
            image_bytes = await self._download(result.url)
        else:
            try:
                image_bytes = base64.b64decode(result.b64_json, validate=True)
            except (binascii.Error, ValueError) as e:
                raise UnknownGenerationError(
                    f"Generation API returned invalid base64 image data: {e}",
                    service=SERVICE,
                ) from e

        url = await self.storage.store(image_bytes, f"{uuid.uuid4()}.png", RESULT_CATEGORY, "image/png")
        if not url:
            raise StorageError("Storage returned an empty URL for the generated image")

        logger.info(
            "generation_completed",
            duration_ms=int((datetime.utcnow() - start_time).total_seconds() * 1000),
            result_bytes=len(image_bytes),
            revised_prompt=result.revised_prompt,
            result_url=url,
        )
        return url

    async def _download(self, url: str) -> bytes:
        """Reachability check followed by the actual download."""
        timeout = self.settings.download_timeout
        try:
            async with self._client(timeout) as client:
                head = await client.head(url, timeout=timeout, follow_redirects=True)
                # Some hosts reject HEAD outright; the GET below decides
                if not head.is_success and head.status_code != 405:
                    raise UpstreamError(
                        f"Generated image is not reachable (HTTP {head.status_code})",
                        service=SERVICE,
                        http_status=head.status_code,
                    )

                response = await client.get(url, timeout=timeout, follow_redirects=True)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"Downloading the generated image timed out after {timeout}s",
                service=SERVICE,
            ) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Generated image download failed: {e}", service=SERVICE) from e

        if not response.is_success:
            raise UpstreamError(
                f"Generated image download failed (HTTP {response.status_code})",
                service=SERVICE,
                http_status=response.status_code,
            )
        if not response.content:
            raise UpstreamError("Generated image download returned an empty body", service=SERVICE)

        logger.debug("generated_image_downloaded", size_bytes=len(response.content))
        return response.content
