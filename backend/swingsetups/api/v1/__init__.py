"""
API v1 Router

All API endpoints for the frontend.
"""

from fastapi import APIRouter

from swingsetups.api.v1.endpoints import analysis, quota

router = APIRouter()

# Include all endpoint routers
router.include_router(analysis.router, prefix="/analysis", tags=["Analysis"])
router.include_router(quota.router, tags=["Quota & Usage"])
