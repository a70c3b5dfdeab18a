"""
Metrics Endpoint

GET /api/v1/metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from homedecor.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - homedecor_stage_latency_seconds (per stage)
    - homedecor_requests_total (per terminal status)
    - homedecor_generation_api_calls_total
    - homedecor_mask_strategy_total, mask cache hits/misses
    - homedecor_http_requests_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
