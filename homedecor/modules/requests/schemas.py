from pydantic import BaseModel, Field
from typing import List, Optional


class CreateImageRequestDTO(BaseModel):
    """Body of POST /api/v1/image-requests."""
    style_label: str = Field(..., min_length=1, max_length=100, description="Target decor style, e.g. 'Modern'")
    source_image_url: str = Field(..., min_length=1, max_length=2048, description="URL of the room photo")
    custom_prompt: Optional[str] = Field(None, max_length=4000, description="Sent verbatim when non-blank")
    use_mask: bool = Field(default=False, description="Preserve walls, windows, ceiling and floor")


class ImageRequestResponse(BaseModel):
    id: str
    user_id: str
    status: str
    style_label: str
    source_image_url: str
    custom_prompt: Optional[str] = None
    use_mask: bool
    mask_applied: bool
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    credits_charged: int
    credits_refunded: bool
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class HistoryResponse(BaseModel):
    user_id: str
    count: int
    requests: List[ImageRequestResponse]


class RequestLogResponse(BaseModel):
    id: Optional[int] = None
    request_id: str
    severity: str
    message: str
    timestamp: Optional[str] = None


class StyleResponse(BaseModel):
    label: str
    description: str
