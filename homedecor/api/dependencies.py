"""
FastAPI Dependencies

The orchestrator and mask service are built once in the application lifespan
and stored on ``app.state``; endpoints receive them through these providers
(tests override them with ``app.dependency_overrides``).
"""

from typing import Optional

from fastapi import Header, Request

from homedecor.core.exceptions import ValidationError
from homedecor.engines.masking.service import MaskGenerationService
from homedecor.pipeline.orchestrator import GenerationOrchestrator


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    return request.app.state.orchestrator


def get_mask_service(request: Request) -> MaskGenerationService:
    return request.app.state.mask_service


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity. Authentication happens upstream of this service."""
    if x_user_id is None or not x_user_id.strip():
        raise ValidationError("X-User-Id header is required", details={"field": "X-User-Id"})
    return x_user_id.strip()
