from homedecor.engines.masking.cache import MaskCacheRepository, compute_fingerprint
from homedecor.engines.masking.schemas import MaskOptions, SegmentationResponse
from homedecor.engines.masking.segmentation import SegmentationClient
from homedecor.engines.masking.service import MaskGenerationService

__all__ = [
    "MaskCacheRepository",
    "MaskGenerationService",
    "MaskOptions",
    "SegmentationClient",
    "SegmentationResponse",
    "compute_fingerprint",
]
