"""
API Router Module

All endpoints are prefixed with /api/:
- POST /api/matting   - background removal of an uploaded photo
- POST /api/ai-fuse   - background generation and fusion
- GET  /api/metrics   - Prometheus metrics
"""

from fastapi import APIRouter

from photofusion.api.routes.matting import router as matting_router
from photofusion.api.routes.ai_fuse import router as ai_fuse_router
from photofusion.api.routes.metrics import router as metrics_router

api_router = APIRouter(prefix="/api")

api_router.include_router(matting_router, prefix="/matting", tags=["matting"])
api_router.include_router(ai_fuse_router, prefix="/ai-fuse", tags=["fusion"])
api_router.include_router(metrics_router, tags=["metrics"])
