"""
Segmentation Service Client

Sends the room image to the external segmentation endpoint and parses the
versioned response. Transport problems raise ``TransientNetworkError``;
anything else that makes the answer unusable raises ``SegmentationError``.
"""

from datetime import datetime
from typing import Optional

import httpx
from pydantic import ValidationError as SchemaValidationError

from homedecor.core.config import MaskSettings
from homedecor.core.exceptions import (
    CircuitBreaker,
    SegmentationError,
    TransientNetworkError,
    get_circuit_breaker,
)
from homedecor.core.logging import get_logger
from homedecor.core.metrics import track_stage_latency
from homedecor.engines.masking.schemas import SegmentationResponse

logger = get_logger(__name__)


class SegmentationClient:

    def __init__(
        self,
        settings: MaskSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit: Optional[CircuitBreaker] = None,
    ):
        if not settings.segmentation_url:
            raise ValueError("segmentation_url is required for the segmentation client")
        self.url = settings.segmentation_url
        self.api_key = settings.segmentation_api_key
        self.timeout = settings.segmentation_timeout
        self.http_client = http_client
        self.circuit = circuit or get_circuit_breaker("segmentation")

    @property
    def available(self) -> bool:
        return self.circuit.can_execute()

    async def _post(self, image_bytes: bytes) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        files = {"image": ("image.png", image_bytes, "image/png")}

        if self.http_client is not None:
            return await self.http_client.post(self.url, files=files, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, files=files, headers=headers)

    async def segment(self, image_bytes: bytes) -> SegmentationResponse:
        start_time = datetime.utcnow()

        try:
            with track_stage_latency("segmentation"):
                response = await self._post(image_bytes)
        except httpx.TimeoutException as e:
            self.circuit.record_failure(e)
            raise TransientNetworkError(
                f"Segmentation service timed out after {self.timeout}s",
                service="segmentation",
            ) from e
        except httpx.TransportError as e:
            self.circuit.record_failure(e)
            raise TransientNetworkError(
                f"Segmentation service unreachable: {e}",
                service="segmentation",
            ) from e

        if not response.is_success:
            self.circuit.record_failure()
            raise SegmentationError(
                f"Segmentation service returned HTTP {response.status_code}",
                http_status=response.status_code,
            )

        try:
            parsed = SegmentationResponse.model_validate(response.json())
        except (ValueError, SchemaValidationError) as e:
            self.circuit.record_failure(e)
            raise SegmentationError(
                f"Malformed segmentation response: {e}",
                http_status=response.status_code,
            ) from e

        self.circuit.record_success()
        logger.info(
            "segmentation_completed",
            regions=len(parsed.regions),
            duration_ms=int((datetime.utcnow() - start_time).total_seconds() * 1000),
        )
        return parsed
