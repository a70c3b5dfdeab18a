from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Dict, List, Literal, Optional, Tuple


class MaskStrategyName:
    SEGMENTATION = "segmentation"
    HEURISTIC = "heuristic"


class MaskOptions(BaseModel):
    """Effective options for one mask generation call.

    Built from the global ``MaskSettings`` with per-call overrides merged on
    top. Part of the cache fingerprint, so two calls with equal options and
    equal image bytes share a cached mask.
    """
    model_config = {"frozen": True}

    segmentation_enabled: bool = False
    multi_pass: bool = False
    feathering: bool = False
    feather_radius: int = Field(default=7, ge=0, le=64)
    high_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    medium_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    class_thresholds: Dict[str, float] = Field(default_factory=dict)
    structural_classes: Tuple[str, ...] = ("wall", "window", "ceiling", "floor")

    @field_validator("class_thresholds")
    @classmethod
    def normalize_threshold_labels(cls, value: Dict[str, float]) -> Dict[str, float]:
        for label, threshold in value.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"threshold for '{label}' must be between 0 and 1")
        return {label.strip().lower(): threshold for label, threshold in value.items()}

    @model_validator(mode="after")
    def check_threshold_order(self) -> "MaskOptions":
        if self.medium_confidence > self.high_confidence:
            raise ValueError("medium_confidence must not exceed high_confidence")
        return self

    def threshold_for(self, label: str) -> float:
        return self.class_thresholds.get(label, self.high_confidence)

    def is_structural(self, label: str) -> bool:
        return label in self.structural_classes


# =============================================================================
# Segmentation Service Response (version 1)
# =============================================================================

class SegmentationRegion(BaseModel):
    """One labelled region. Either a base64 PNG mask or an [x, y, w, h] box."""
    label: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    mask: Optional[str] = None
    bbox: Optional[List[int]] = Field(None, min_length=4, max_length=4)

    @field_validator("label")
    @classmethod
    def normalize_label(cls, value: str) -> str:
        return value.strip().lower()

    @model_validator(mode="after")
    def check_geometry(self) -> "SegmentationRegion":
        if self.mask is None and self.bbox is None:
            raise ValueError("region needs a mask or a bbox")
        return self


class SegmentationResponse(BaseModel):
    version: Literal[1]
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    regions: List[SegmentationRegion] = Field(default_factory=list)
