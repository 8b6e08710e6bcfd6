"""
Matting Service

Upload original -> background removal -> cutout on a transparent canvas
the size of the original -> upload cutout.
"""

import asyncio
from typing import Dict, Optional

from PIL import Image

from photofusion.core.exceptions import ImageProcessingError, ValidationError
from photofusion.core.logging import get_logger, with_logging
from photofusion.core.metrics import track_stage_latency
from photofusion.core.storage import IStorage
from photofusion.engines.imaging import (
    compose_on_transparent_canvas,
    open_image,
    resize_inside,
    to_png_bytes,
)
from photofusion.engines.stability import StabilityClient

logger = get_logger(__name__)

STAGE = "matting"


class MattingService:

    def __init__(
        self,
        storage: IStorage,
        remover: StabilityClient,
        max_edge: int = 1280,
        max_upload_bytes: int = 10485760
    ):
        self.storage = storage
        self.remover = remover
        self.max_edge = max_edge
        self.max_upload_bytes = max_upload_bytes

    def _validate(self, file_bytes: bytes) -> Image.Image:
        if not file_bytes:
            raise ValidationError("No image file received", stage=STAGE)

        if len(file_bytes) > self.max_upload_bytes:
            raise ValidationError(
                f"Image size ({len(file_bytes) / (1024 * 1024):.2f}MB) exceeds maximum allowed size "
                f"({self.max_upload_bytes / (1024 * 1024):.0f}MB)",
                stage=STAGE
            )

        try:
            return open_image(file_bytes)
        except ImageProcessingError as e:
            raise ValidationError("Uploaded file is not a readable image", stage=STAGE) from e

    def _prepare_for_api(self, image: Image.Image, file_bytes: bytes, filename: str):
        """Large uploads are sent downscaled; the cutout is scaled back up afterwards."""
        if max(image.size) <= self.max_edge:
            return file_bytes, filename
        return to_png_bytes(resize_inside(image, self.max_edge)), "image.png"

    @staticmethod
    def _compose(cutout_bytes: bytes, width: int, height: int) -> bytes:
        try:
            cutout = open_image(cutout_bytes)
            return to_png_bytes(compose_on_transparent_canvas(cutout, width, height))
        except (ImageProcessingError, OSError, ValueError) as e:
            logger.error("matting_compose_failed", error=str(e))
            raise ImageProcessingError(
                "Image processing after background removal failed, "
                "check the image format or contact support",
                stage=STAGE
            ) from e

    @with_logging(STAGE)
    async def process(
        self,
        file_bytes: bytes,
        filename: Optional[str],
        content_type: Optional[str] = None
    ) -> Dict[str, str]:
        """Returns {"mattingUrl": ..., "originalUrl": ...}."""
        filename = filename or "upload.png"
        original = await asyncio.to_thread(self._validate, file_bytes)
        width, height = original.size
        logger.info("original_received", width=width, height=height, size=len(file_bytes))

        original_url = await self.storage.upload_and_get_url(
            file_bytes,
            filename,
            content_type=content_type or Image.MIME.get(original.format, "application/octet-stream")
        )

        api_bytes, api_filename = await asyncio.to_thread(
            self._prepare_for_api, original, file_bytes, filename
        )

        with track_stage_latency(STAGE):
            cutout_bytes = await self.remover.remove_background(api_bytes, api_filename)
            matted_png = await asyncio.to_thread(self._compose, cutout_bytes, width, height)

        matting_url = await self.storage.upload_and_get_url(matted_png, "matted.png")

        return {"mattingUrl": matting_url, "originalUrl": original_url}
