"""
Mask Strategies

Both strategies produce a single-channel uint8 alpha plane with the image's
dimensions: 255 marks structure to preserve (walls, windows, ceiling, floor),
0 marks decor the generation API may repaint.

- SegmentationMaskStrategy: classifies labelled regions returned by the
  segmentation service.
- HeuristicMaskStrategy: deterministic OpenCV approximation used when
  segmentation is disabled or unavailable.
"""

import base64
import io
from typing import Tuple

import cv2
import numpy as np
from PIL import Image

from homedecor.engines.masking.schemas import MaskOptions, SegmentationRegion, SegmentationResponse

PRESERVE = 255
EDIT = 0


# =============================================================================
# Shared Post-Processing
# =============================================================================

def _odd(value: int) -> int:
    return value if value % 2 == 1 else value + 1


def refine_alpha(alpha: np.ndarray) -> np.ndarray:
    """Multi-pass refinement: close small holes, then drop isolated speckle."""
    size = _odd(max(3, min(alpha.shape[:2]) // 100))
    kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size))
    closed = cv2.morphologyEx(alpha, cv2.MORPH_CLOSE, kernel)
    return cv2.morphologyEx(closed, cv2.MORPH_OPEN, kernel)


def feather_alpha(alpha: np.ndarray, radius: int) -> np.ndarray:
    """Soften region boundaries with a Gaussian blur of the alpha plane."""
    if radius <= 0:
        return alpha
    size = _odd(2 * radius + 1)
    return cv2.GaussianBlur(alpha, (size, size), 0)


def finalize_alpha(alpha: np.ndarray, options: MaskOptions) -> np.ndarray:
    if options.multi_pass:
        alpha = refine_alpha(alpha)
    if options.feathering:
        alpha = feather_alpha(alpha, options.feather_radius)
    return alpha


def encode_mask(alpha: np.ndarray) -> bytes:
    """White RGBA PNG whose alpha channel is ``alpha``."""
    height, width = alpha.shape[:2]
    rgba = np.empty((height, width, 4), dtype=np.uint8)
    rgba[:, :, :3] = 255
    rgba[:, :, 3] = alpha
    buffer = io.BytesIO()
    Image.fromarray(rgba).save(buffer, format="PNG")
    return buffer.getvalue()


# =============================================================================
# Segmentation Strategy
# =============================================================================

class SegmentationMaskStrategy:
    """Turns a segmentation response into a preserve/edit alpha plane."""

    name = "segmentation"

    @staticmethod
    def region_pixels(
        region: SegmentationRegion,
        response: SegmentationResponse,
        size: Tuple[int, int],
    ) -> np.ndarray:
        """Boolean plane (image size) covered by ``region``."""
        width, height = size

        if region.mask is not None:
            decoded = Image.open(io.BytesIO(base64.b64decode(region.mask)))
            if decoded.mode in ("RGBA", "LA"):
                plane = decoded.getchannel("A")
            else:
                plane = decoded.convert("L")
            if plane.size != (width, height):
                plane = plane.resize((width, height), Image.Resampling.NEAREST)
            return np.asarray(plane) > 127

        # bbox is expressed in the response's coordinate space
        x, y, w, h = region.bbox
        sx = width / response.width
        sy = height / response.height
        x0, y0 = max(0, int(x * sx)), max(0, int(y * sy))
        x1, y1 = min(width, int(round((x + w) * sx))), min(height, int(round((y + h) * sy)))
        covered = np.zeros((height, width), dtype=bool)
        if x1 > x0 and y1 > y0:
            covered[y0:y1, x0:x1] = True
        return covered

    @staticmethod
    def region_alpha(region: SegmentationRegion, options: MaskOptions) -> int:
        """Alpha value a region contributes.

        Structural and confident: preserve. Structural with medium confidence:
        partial alpha when feathering is on, editable otherwise. Anything
        else stays editable.
        """
        if not options.is_structural(region.label):
            return EDIT
        threshold = options.threshold_for(region.label)
        if region.confidence >= threshold:
            return PRESERVE
        if region.confidence >= options.medium_confidence and options.feathering:
            return int(round(PRESERVE * region.confidence))
        return EDIT

    @classmethod
    def build_alpha(
        cls,
        response: SegmentationResponse,
        options: MaskOptions,
        size: Tuple[int, int],
    ) -> np.ndarray:
        width, height = size
        alpha = np.full((height, width), EDIT, dtype=np.uint8)
        for region in response.regions:
            value = cls.region_alpha(region, options)
            if value == EDIT:
                continue
            covered = cls.region_pixels(region, response, size)
            alpha[covered] = np.maximum(alpha[covered], value)
        return alpha


# =============================================================================
# Heuristic Strategy
# =============================================================================

class HeuristicMaskStrategy:
    """
    Structure estimate from image statistics alone.

    - Low edge density (flat, untextured areas) -> walls
    - Large bright areas -> windows and light sources in them
    - Top band -> ceiling, bottom band -> floor
    """

    name = "heuristic"

    CANNY_LOW = 50
    CANNY_HIGH = 150
    FLAT_EDGE_DENSITY = 0.04
    BRIGHT_LEVEL = 225
    CEILING_BAND = 0.12
    FLOOR_BAND = 0.12

    @classmethod
    def build_alpha(cls, rgb: np.ndarray, options: MaskOptions) -> np.ndarray:
        height, width = rgb.shape[:2]
        gray = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)

        # Edge density over a window proportional to the image size
        edges = cv2.Canny(gray, cls.CANNY_LOW, cls.CANNY_HIGH)
        window = max(9, min(height, width) // 20)
        density = cv2.blur(edges.astype(np.float32) / 255.0, (window, window))
        flat = density < cls.FLAT_EDGE_DENSITY

        # Bright blobs; opening removes isolated bright pixels of textured decor
        bright = (gray >= cls.BRIGHT_LEVEL).astype(np.uint8)
        open_size = _odd(max(5, min(height, width) // 80))
        bright = cv2.morphologyEx(
            bright,
            cv2.MORPH_OPEN,
            cv2.getStructuringElement(cv2.MORPH_RECT, (open_size, open_size)),
        ).astype(bool)

        preserve = flat | bright
        preserve[: max(1, int(height * cls.CEILING_BAND)), :] = True
        preserve[height - max(1, int(height * cls.FLOOR_BAND)):, :] = True

        return np.where(preserve, PRESERVE, EDIT).astype(np.uint8)
