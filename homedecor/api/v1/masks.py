"""
Mask Endpoints

GET  /api/v1/masks/status    - segmentation configuration and availability
POST /api/v1/masks/generate  - build a mask for an uploaded image (image/png)
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile

from homedecor.api.dependencies import get_mask_service
from homedecor.core.exceptions import ValidationError
from homedecor.core.logging import get_logger
from homedecor.engines.masking.service import MaskGenerationService

logger = get_logger(__name__)
router = APIRouter()

# mask_type form value -> segmentation override
MASK_TYPES = {
    "segmentation": True,
    "demo": False,
    "automatic": None,  # use the configured default
}


@router.get("/status")
async def mask_status(service: MaskGenerationService = Depends(get_mask_service)) -> Dict[str, Any]:
    return service.status()


@router.post("/generate")
async def generate_mask(
    image: UploadFile = File(..., description="Room photo"),
    mask_type: str = Form(default="automatic"),
    multi_pass: Optional[bool] = Form(default=None),
    feathering: Optional[bool] = Form(default=None),
    feather_radius: Optional[int] = Form(default=None),
    high_confidence: Optional[float] = Form(default=None),
    medium_confidence: Optional[float] = Form(default=None),
    class_thresholds: Optional[str] = Form(default=None, description="JSON object of label -> threshold"),
    service: MaskGenerationService = Depends(get_mask_service),
):
    mask_type = mask_type.strip().lower()
    if mask_type not in MASK_TYPES:
        raise ValidationError(
            f"Unknown mask_type '{mask_type}'",
            details={"allowed": sorted(MASK_TYPES)},
        )

    data = await image.read()
    if not data:
        raise ValidationError("Uploaded image is empty")

    overrides = {
        "segmentation_enabled": MASK_TYPES[mask_type],
        "multi_pass": multi_pass,
        "feathering": feathering,
        "feather_radius": feather_radius,
        "high_confidence": high_confidence,
        "medium_confidence": medium_confidence,
        "class_thresholds": class_thresholds,
    }

    logger.info("mask_requested", mask_type=mask_type, filename=image.filename, size_bytes=len(data))
    mask = await service.generate_mask(data, overrides)
    return Response(content=mask, media_type="image/png")
