"""
Image Conformance Transformer

Turns an arbitrary room photo into a PNG the generation API accepts:
at most ``max_bytes`` long and at most ``max_dimension`` pixels per axis.

Escalation passes (each one only runs when the previous result is still
over budget):

1. Format normalization: re-encode to PNG as-is.
2. Resize by sqrt(target / current), full quality.
3. Resize again against the new size, quality 80.
4. Resize again, quality 60.
5. Longest edge capped at ``fallback_dimension``, quality 50.

PNG is lossless, so "quality" selects an encoder profile rather than a
JPEG-style quantizer: 100 is the standard zlib level, below 100 is maximum
compression, below 70 adds adaptive palette quantization.

Passes 2-4 never shrink the shorter side below ``min_dimension`` (or the
original shorter side, when that is already smaller).
"""

import io
import math
from datetime import datetime
from typing import Optional, Tuple

from PIL import Image, ImageOps

from homedecor.core.config import ConformanceSettings
from homedecor.core.exceptions import DecodeError, SizeConstraintUnsatisfiable
from homedecor.core.logging import get_logger
from homedecor.modules.requests.models import ConformanceResult

logger = get_logger(__name__)

FULL_QUALITY = 100
MAX_COMPRESSION_BELOW = 100
QUANTIZE_BELOW = 70


# =============================================================================
# Encoding Helpers
# =============================================================================

def decode_image(data: bytes) -> Image.Image:
    """Decode raster bytes, apply EXIF orientation and normalize the mode."""
    if not data:
        raise DecodeError("Image data is empty", stage="conformance")

    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        image = ImageOps.exif_transpose(image)
    except Exception as e:
        raise DecodeError(f"Unable to decode image: {e}", stage="conformance") from e

    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        return image.convert("RGBA")
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def encode_png(image: Image.Image, quality: int = FULL_QUALITY) -> bytes:
    """Encode ``image`` as PNG using the encoder profile for ``quality``."""
    buffer = io.BytesIO()

    if quality >= FULL_QUALITY:
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    if quality < QUANTIZE_BELOW:
        colors = max(16, min(256, int(256 * quality / 100)))
        image = image.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)

    image.save(buffer, format="PNG", optimize=True, compress_level=9)
    return buffer.getvalue()


def clamp_dimensions(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """Scale (width, height) down so neither axis exceeds ``max_dimension``."""
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    ratio = max_dimension / longest
    return max(1, int(width * ratio)), max(1, int(height * ratio))


def resize_to(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    if image.size == size:
        return image
    return image.resize(size, Image.Resampling.LANCZOS)


# =============================================================================
# Conformer
# =============================================================================

class ImageConformer:
    """
    Produces a ``ConformanceResult`` that satisfies the configured limits,
    or raises ``SizeConstraintUnsatisfiable``. Pure CPU work; the
    orchestrator runs it in a worker thread.
    """

    def __init__(self, settings: Optional[ConformanceSettings] = None):
        self.settings = settings or ConformanceSettings()

    def _fits(self, encoded: bytes, image: Image.Image) -> bool:
        width, height = image.size
        return (
            len(encoded) <= self.settings.max_bytes
            and width <= self.settings.max_dimension
            and height <= self.settings.max_dimension
        )

    def _result(self, encoded: bytes, image: Image.Image, passes: int, started: datetime) -> ConformanceResult:
        width, height = image.size
        logger.info(
            "conformance_completed",
            passes=passes,
            width=width,
            height=height,
            size_bytes=len(encoded),
            duration_ms=int((datetime.utcnow() - started).total_seconds() * 1000),
        )
        return ConformanceResult(
            data=encoded,
            width=width,
            height=height,
            size_bytes=len(encoded),
            passes=passes,
        )

    def _scaled_size(
        self,
        image: Image.Image,
        current_bytes: int,
        headroom: float,
        floor: int,
    ) -> Tuple[int, int]:
        """Dimensions expected to bring ``current_bytes`` under the pass target."""
        width, height = image.size
        target = self.settings.max_bytes * headroom
        scale = min(1.0, math.sqrt(target / current_bytes)) if current_bytes > 0 else 1.0

        short = min(width, height)
        if short * scale < floor:
            scale = min(1.0, floor / short)

        new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
        return clamp_dimensions(*new_size, self.settings.max_dimension)

    def conform(self, data: bytes) -> ConformanceResult:
        started = datetime.utcnow()
        original = decode_image(data)
        cfg = self.settings
        q_full, q_second, q_third, q_fallback = cfg.quality_steps
        logger.debug(
            "conformance_started",
            input_bytes=len(data),
            width=original.width,
            height=original.height,
        )

        # Pass 1: format normalization only
        width, height = original.size
        last_size = len(data)
        if len(data) <= cfg.max_bytes and width <= cfg.max_dimension and height <= cfg.max_dimension:
            encoded = encode_png(original, q_full)
            if self._fits(encoded, original):
                return self._result(encoded, original, 1, started)
            last_size = len(encoded)

        # Passes 2-4: progressively smaller and more aggressively encoded
        image = original
        floor = min(cfg.min_dimension, width, height)
        steps = (
            (2, q_full, cfg.target_headroom[0]),
            (3, q_second, cfg.target_headroom[1]),
            (4, q_third, cfg.target_headroom[2]),
        )
        for pass_number, quality, headroom in steps:
            image = resize_to(image, self._scaled_size(image, last_size, headroom, floor))
            encoded = encode_png(image, quality)
            if self._fits(encoded, image):
                return self._result(encoded, image, pass_number, started)
            logger.debug(
                "conformance_pass_over_budget",
                pass_number=pass_number,
                quality=quality,
                width=image.width,
                height=image.height,
                size_bytes=len(encoded),
            )
            last_size = len(encoded)

        # Pass 5: last resort
        fallback_size = clamp_dimensions(original.width, original.height, cfg.fallback_dimension)
        fallback_size = clamp_dimensions(*fallback_size, cfg.max_dimension)
        image = resize_to(original, fallback_size)
        encoded = encode_png(image, q_fallback)
        if self._fits(encoded, image):
            return self._result(encoded, image, 5, started)

        logger.warning(
            "conformance_unsatisfiable",
            input_bytes=len(data),
            final_bytes=len(encoded),
            max_bytes=cfg.max_bytes,
        )
        raise SizeConstraintUnsatisfiable(
            f"Unable to reduce image below {cfg.max_bytes} bytes "
            f"(smallest attempt was {len(encoded)} bytes at {image.width}x{image.height})",
            size_bytes=len(encoded),
        )
