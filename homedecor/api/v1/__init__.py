"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- /api/v1/image-requests  - create and poll redecoration requests
- /api/v1/history         - the caller's recent requests
- /api/v1/masks           - standalone mask generation
- /api/v1/styles          - known style labels
- /api/v1/metrics         - Prometheus scrape endpoint
"""

from fastapi import APIRouter

from homedecor.api.v1.masks import router as masks_router
from homedecor.api.v1.metrics import router as metrics_router
from homedecor.api.v1.requests import history_router, router as requests_router
from homedecor.api.v1.styles import router as styles_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(requests_router, prefix="/image-requests", tags=["image requests"])
api_v1_router.include_router(history_router, prefix="/history", tags=["image requests"])
api_v1_router.include_router(masks_router, prefix="/masks", tags=["masks"])
api_v1_router.include_router(styles_router, prefix="/styles", tags=["styles"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
