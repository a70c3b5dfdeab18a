"""
Image Request Endpoints

POST /api/v1/image-requests            - create a request, processed in the background
GET  /api/v1/image-requests/{id}       - poll a request
GET  /api/v1/image-requests/{id}/logs  - per-request log stream
GET  /api/v1/history                   - the caller's most recent requests
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from homedecor.api.dependencies import get_orchestrator, get_user_id
from homedecor.core.logging import get_logger
from homedecor.modules.requests.schemas import (
    CreateImageRequestDTO,
    HistoryResponse,
    ImageRequestResponse,
    RequestLogResponse,
)
from homedecor.pipeline.orchestrator import GenerationOrchestrator

logger = get_logger(__name__)
router = APIRouter()
history_router = APIRouter()


@router.post("", response_model=ImageRequestResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_image_request(
    body: CreateImageRequestDTO,
    user_id: str = Depends(get_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Create a redecoration request.

    Returns immediately with status Pending; poll GET /{id} until the
    request is Completed (``result_url``) or Failed (``error_message``).
    """
    request = await orchestrator.create_and_process(
        user_id=user_id,
        style_label=body.style_label,
        source_image_url=body.source_image_url,
        custom_prompt=body.custom_prompt,
        use_mask=body.use_mask,
    )
    return request.to_response_dict()


@router.get("/{request_id}", response_model=ImageRequestResponse)
async def get_image_request(
    request_id: str,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    request = await orchestrator.get_by_id(request_id)
    if request is None:
        raise HTTPException(status_code=404, detail=f"Image request {request_id} not found")
    return request.to_response_dict()


@router.get("/{request_id}/logs", response_model=List[RequestLogResponse])
async def get_image_request_logs(
    request_id: str,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    request = await orchestrator.get_by_id(request_id)
    if request is None:
        raise HTTPException(status_code=404, detail=f"Image request {request_id} not found")
    logs = await orchestrator.get_logs(request_id)
    return [entry.to_response_dict() for entry in logs]


@history_router.get("", response_model=HistoryResponse)
async def get_history(
    limit: int = Query(default=10, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    requests = await orchestrator.get_history(user_id, limit)
    return {
        "user_id": user_id,
        "count": len(requests),
        "requests": [r.to_response_dict() for r in requests],
    }
