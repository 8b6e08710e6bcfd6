"""
Matting Endpoint

POST /api/matting - multipart upload (field "file"), returns the public URLs
of the stored original and of the transparent cutout.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from photofusion.api.dependencies import get_matting_service
from photofusion.core.exceptions import ValidationError
from photofusion.core.logging import get_logger
from photofusion.services.matting import MattingService

logger = get_logger(__name__)
router = APIRouter()


class MattingResponse(BaseModel):
    mattingUrl: str
    originalUrl: str


@router.post("", response_model=MattingResponse)
async def matting(
    file: Optional[UploadFile] = File(None),
    service: MattingService = Depends(get_matting_service)
):
    """
    Remove the background of an uploaded photo.

    Flow:
    1. Store the original upload
    2. Background removal (retried on upstream 5xx)
    3. Cutout placed on a transparent canvas the size of the original
    4. Store the cutout
    """
    if file is None:
        raise ValidationError("No image file received", stage="matting")

    file_bytes = await file.read()
    logger.info(
        "matting_request_received",
        filename=file.filename,
        content_type=file.content_type,
        size=len(file_bytes)
    )

    result = await service.process(file_bytes, file.filename, file.content_type)
    return MattingResponse(**result)
