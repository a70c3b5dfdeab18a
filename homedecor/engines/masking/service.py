"""
Mask Generation Service

Produces the RGBA mask sent alongside the room image to the generation API.
Transparent pixels (alpha 0) may be repainted; opaque white pixels
(alpha 255) mark structure that must survive the redecoration.

Flow per call:
    resolve options -> fingerprint -> cache lookup -> strategy -> post-process
    -> encode PNG -> cache store
"""

import asyncio
import json
from typing import Any, Dict, Mapping, Optional

import numpy as np
from pydantic import ValidationError as SchemaValidationError

from homedecor.core.config import MaskSettings
from homedecor.core.exceptions import HomeDecorError, SegmentationError, ValidationError
from homedecor.core.logging import get_logger
from homedecor.core.metrics import record_mask_cache, record_mask_strategy, track_stage_latency
from homedecor.engines.conformance.transformer import decode_image
from homedecor.engines.masking.cache import MaskCacheRepository, compute_fingerprint
from homedecor.engines.masking.schemas import MaskOptions, MaskStrategyName
from homedecor.engines.masking.segmentation import SegmentationClient
from homedecor.engines.masking.strategies import (
    HeuristicMaskStrategy,
    SegmentationMaskStrategy,
    encode_mask,
    finalize_alpha,
)

logger = get_logger(__name__)

OVERRIDABLE_KEYS = (
    "segmentation_enabled",
    "multi_pass",
    "feathering",
    "feather_radius",
    "high_confidence",
    "medium_confidence",
    "class_thresholds",
)


class MaskGenerationService:

    def __init__(
        self,
        settings: MaskSettings,
        cache: Optional[MaskCacheRepository] = None,
        segmentation_client: Optional[SegmentationClient] = None,
    ):
        self.settings = settings
        self.cache = cache
        self.segmentation_client = segmentation_client

    # ==========================================================================
    # Options
    # ==========================================================================

    def _base_options(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "segmentation_enabled": s.segmentation_enabled,
            "multi_pass": s.multi_pass,
            "feathering": s.feathering,
            "feather_radius": s.feather_radius,
            "high_confidence": s.high_confidence,
            "medium_confidence": s.medium_confidence,
            "class_thresholds": dict(s.class_thresholds),
            "structural_classes": tuple(s.structural_classes),
        }

    def resolve_options(self, overrides: Optional[Mapping[str, Any]] = None) -> MaskOptions:
        """Merge per-call overrides onto the global settings.

        Unknown keys are ignored. ``class_thresholds`` merges label by label
        and may be given as a mapping or a JSON object string.
        """
        merged = self._base_options()

        for key, value in (overrides or {}).items():
            if key not in OVERRIDABLE_KEYS:
                logger.debug("mask_override_ignored", key=key)
                continue
            if value is None:
                continue
            if key == "class_thresholds":
                if isinstance(value, str):
                    try:
                        value = json.loads(value)
                    except ValueError as e:
                        raise ValidationError(f"class_thresholds is not valid JSON: {e}", stage="masking") from e
                if not isinstance(value, Mapping):
                    raise ValidationError("class_thresholds must be a mapping of label to threshold", stage="masking")
                merged["class_thresholds"] = {**merged["class_thresholds"], **value}
            else:
                merged[key] = value

        try:
            return MaskOptions.model_validate(merged)
        except SchemaValidationError as e:
            raise ValidationError(
                "Invalid mask options",
                stage="masking",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    def _use_segmentation(self, options: MaskOptions) -> bool:
        return (
            options.segmentation_enabled
            and self.segmentation_client is not None
            and self.segmentation_client.available
        )

    # ==========================================================================
    # Cache (failures degrade to a miss)
    # ==========================================================================

    async def _cache_get(self, fingerprint: str) -> Optional[bytes]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(fingerprint)
        except Exception as e:
            logger.warning("mask_cache_read_failed", error=str(e), error_type=type(e).__name__)
            return None

    async def _cache_set(self, fingerprint: str, mask_png: bytes):
        if self.cache is None:
            return
        try:
            await self.cache.set(fingerprint, mask_png)
        except Exception as e:
            logger.warning("mask_cache_write_failed", error=str(e), error_type=type(e).__name__)

    # ==========================================================================
    # Generation
    # ==========================================================================

    async def generate_mask(
        self,
        image_bytes: Optional[bytes],
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> bytes:
        if not image_bytes:
            raise ValidationError("Image data is required for mask generation", stage="masking")

        options = self.resolve_options(overrides)
        fingerprint = compute_fingerprint(image_bytes, options)

        cached = await self._cache_get(fingerprint)
        if cached:
            record_mask_cache(hit=True)
            logger.info("mask_cache_hit", fingerprint=fingerprint[:16])
            return cached
        if self.cache is not None:
            record_mask_cache(hit=False)

        image = await asyncio.to_thread(decode_image, image_bytes)
        size = image.size

        with track_stage_latency("masking"):
            if self._use_segmentation(options):
                strategy = MaskStrategyName.SEGMENTATION
                response = await self.segmentation_client.segment(image_bytes)
                try:
                    alpha = await asyncio.to_thread(SegmentationMaskStrategy.build_alpha, response, options, size)
                except HomeDecorError:
                    raise
                except Exception as e:
                    raise SegmentationError(f"Unusable segmentation region data: {e}") from e
            else:
                strategy = MaskStrategyName.HEURISTIC
                if options.segmentation_enabled:
                    logger.info(
                        "segmentation_unavailable_using_heuristic",
                        configured=self.segmentation_client is not None,
                    )
                rgb = np.asarray(image.convert("RGB"))
                alpha = await asyncio.to_thread(HeuristicMaskStrategy.build_alpha, rgb, options)

            alpha = await asyncio.to_thread(finalize_alpha, alpha, options)
            mask_png = await asyncio.to_thread(encode_mask, alpha)

        record_mask_strategy(strategy)
        logger.info(
            "mask_generated",
            strategy=strategy,
            width=size[0],
            height=size[1],
            preserved_ratio=round(float(np.count_nonzero(alpha)) / alpha.size, 4),
            multi_pass=options.multi_pass,
            feathering=options.feathering,
        )

        await self._cache_set(fingerprint, mask_png)
        return mask_png

    def status(self) -> Dict[str, Any]:
        client = self.segmentation_client
        return {
            "segmentation_enabled": self.settings.segmentation_enabled,
            "segmentation_configured": client is not None,
            "segmentation_available": client is not None and client.available,
            "endpoint": client.url if client is not None else None,
            "circuit_state": client.circuit.state.value if client is not None else None,
            "multi_pass": self.settings.multi_pass,
            "feathering": self.settings.feathering,
            "cache_enabled": self.cache is not None,
            "confidence_thresholds": {
                "high": self.settings.high_confidence,
                "medium": self.settings.medium_confidence,
                **self.settings.class_thresholds,
            },
        }
