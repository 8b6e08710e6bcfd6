"""
AI Fuse Endpoint

POST /api/ai-fuse, dispatched on "action":
- generate-background: {prompt, mattingUrl, aspectRatio?} -> {backgrounds: [url]}
- fuse-image: {mattingUrl, backgroundUrl, aspectRatio?, colorMatch?} -> {fusedUrl}
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from photofusion.api.dependencies import get_fusion_service
from photofusion.core.exceptions import ValidationError
from photofusion.core.logging import get_logger
from photofusion.services.fusion import FusionService

logger = get_logger(__name__)
router = APIRouter()

GENERATE_BACKGROUND = "generate-background"
FUSE_IMAGE = "fuse-image"


# =============================================================================
# Request/Response Schemas
# =============================================================================

class AiFuseRequest(BaseModel):
    action: Optional[str] = None
    prompt: Optional[str] = Field(None, max_length=2000)
    mattingUrl: Optional[str] = None
    backgroundUrl: Optional[str] = None
    aspectRatio: Optional[str] = Field(None, description='e.g. "16:9"; omit to keep the cutout ratio')
    colorMatch: Optional[str] = Field(None, description="tint, soft-light or none")


class GenerateBackgroundResponse(BaseModel):
    backgrounds: List[str]


class FuseImageResponse(BaseModel):
    fusedUrl: str


# =============================================================================
# Endpoints
# =============================================================================

@router.post("")
async def ai_fuse(
    request: AiFuseRequest,
    service: FusionService = Depends(get_fusion_service)
):
    logger.info("ai_fuse_request_received", action=request.action)

    if request.action == GENERATE_BACKGROUND:
        result = await service.generate_background(
            request.prompt,
            request.mattingUrl,
            aspect_ratio=request.aspectRatio
        )
        return GenerateBackgroundResponse(**result)

    if request.action == FUSE_IMAGE:
        result = await service.fuse_image(
            request.mattingUrl,
            request.backgroundUrl,
            aspect_ratio=request.aspectRatio,
            color_match=request.colorMatch
        )
        return FuseImageResponse(**result)

    raise ValidationError(
        "Invalid action",
        details={"action": request.action, "allowed": [GENERATE_BACKGROUND, FUSE_IMAGE]}
    )
