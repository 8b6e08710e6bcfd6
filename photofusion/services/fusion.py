"""
Fusion Service

generate-background: prompt (optionally expanded by an LLM) -> provider
image sized after the cutout -> upload.

fuse-image: cutout + background -> cover-fit background, colour-matched
cutout composited on top -> upload.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import httpx

from photofusion.core.config import Settings
from photofusion.core.exceptions import ImageProcessingError, ValidationError
from photofusion.core.http import download_image
from photofusion.core.logging import get_logger, with_logging
from photofusion.core.metrics import track_stage_latency
from photofusion.core.storage import IStorage
from photofusion.engines.imaging import (
    centered_offset,
    composite_over,
    cover_fit,
    dominant_color,
    ensure_png,
    fit_inside,
    image_size,
    open_image,
    parse_aspect_ratio,
    round_to_multiple,
    soft_light,
    target_size,
    tint,
    to_png_bytes,
)
from photofusion.engines.openrouter import PromptExpander
from photofusion.engines.piapi import PiAPIClient
from photofusion.engines.stability import StabilityClient

logger = get_logger(__name__)

COLOR_MATCH_MODES = ("tint", "soft-light", "none")


def build_background_generator(client: httpx.AsyncClient, config: Settings):
    """Stability (synchronous) or PiAPI (task polling), per BACKGROUND_PROVIDER."""
    provider = config.BACKGROUND_PROVIDER.strip().lower()
    if provider == "stability":
        return StabilityClient.from_settings(client, config)
    if provider == "piapi":
        return PiAPIClient.from_settings(client, config)
    raise ValueError(f"Unknown BACKGROUND_PROVIDER '{config.BACKGROUND_PROVIDER}'")


def _aspect_ratio_or_400(value: Optional[str]) -> Optional[Tuple[int, int]]:
    try:
        return parse_aspect_ratio(value)
    except ValueError as e:
        raise ValidationError(str(e), details={"aspectRatio": value}) from e


class FusionService:

    def __init__(
        self,
        storage: IStorage,
        client: httpx.AsyncClient,
        generator,
        expander: Optional[PromptExpander] = None,
        quality_suffix: str = "",
        size_multiple: int = 64,
        color_match_mode: str = "tint",
        soft_light_opacity: float = 0.5
    ):
        self.storage = storage
        self.client = client
        self.generator = generator
        self.expander = expander
        self.quality_suffix = quality_suffix
        self.size_multiple = size_multiple
        self.color_match_mode = color_match_mode
        self.soft_light_opacity = soft_light_opacity

    @classmethod
    def from_settings(cls, storage: IStorage, client: httpx.AsyncClient, config: Settings) -> "FusionService":
        return cls(
            storage,
            client,
            generator=build_background_generator(client, config),
            expander=PromptExpander.from_settings(client, config),
            quality_suffix=config.PROMPT_QUALITY_SUFFIX,
            size_multiple=config.GENERATION_SIZE_MULTIPLE,
            color_match_mode=config.COLOR_MATCH_MODE,
            soft_light_opacity=config.SOFT_LIGHT_OPACITY
        )

    # =========================================================================
    # generate-background
    # =========================================================================

    async def build_prompt(self, prompt: str) -> str:
        text = prompt.strip()
        if self.expander is not None:
            text = await self.expander.expand(text)
        if self.quality_suffix:
            text = f"{text}, {self.quality_suffix}"
        return text

    @with_logging("generate_background")
    async def generate_background(
        self,
        prompt: Optional[str],
        matting_url: Optional[str],
        aspect_ratio: Optional[str] = None
    ) -> Dict[str, List[str]]:
        if not prompt or not prompt.strip() or not matting_url:
            raise ValidationError("Missing prompt or mattingUrl parameter", stage="generate_background")
        ratio = _aspect_ratio_or_400(aspect_ratio)

        enhanced_prompt = await self.build_prompt(prompt)
        logger.info("background_prompt_ready", prompt=enhanced_prompt)

        matting_bytes = await download_image(self.client, matting_url)
        width, height = await asyncio.to_thread(image_size, matting_bytes)

        target_w, target_h = target_size(width, height, ratio)
        gen_w = round_to_multiple(target_w, self.size_multiple)
        gen_h = round_to_multiple(target_h, self.size_multiple)
        logger.info(
            "background_size_selected",
            cutout_width=width,
            cutout_height=height,
            width=gen_w,
            height=gen_h
        )

        with track_stage_latency("generate_background"):
            background = await self.generator.generate(enhanced_prompt, gen_w, gen_h)
        background_png = await asyncio.to_thread(ensure_png, background)

        url = await self.storage.upload_and_get_url(background_png, "background.png")
        return {"backgrounds": [url]}

    # =========================================================================
    # fuse-image
    # =========================================================================

    def _fuse(
        self,
        matting_bytes: bytes,
        background_bytes: bytes,
        ratio: Optional[Tuple[int, int]],
        mode: str
    ) -> bytes:
        try:
            cutout = open_image(matting_bytes).convert("RGBA")
            background = open_image(background_bytes).convert("RGB")

            canvas_w, canvas_h = target_size(cutout.width, cutout.height, ratio)
            backdrop = cover_fit(background, canvas_w, canvas_h)

            position = (0, 0)
            if cutout.size != (canvas_w, canvas_h):
                cutout = fit_inside(cutout, canvas_w, canvas_h)
                position = centered_offset(cutout.size, backdrop.size)

            if mode == "tint":
                color = dominant_color(backdrop)
                logger.info("color_match_tint", dominant_color=color)
                cutout = tint(cutout, color)
            elif mode == "soft-light":
                x, y = position
                region = backdrop.crop((x, y, x + cutout.width, y + cutout.height))
                cutout = soft_light(cutout, region, self.soft_light_opacity)

            return to_png_bytes(composite_over(backdrop, cutout, position))
        except ImageProcessingError:
            raise
        except (OSError, ValueError) as e:
            raise ImageProcessingError(f"Image fusion failed: {e}", stage="fusion") from e

    @with_logging("fusion")
    async def fuse_image(
        self,
        matting_url: Optional[str],
        background_url: Optional[str],
        aspect_ratio: Optional[str] = None,
        color_match: Optional[str] = None
    ) -> Dict[str, str]:
        if not matting_url or not background_url:
            raise ValidationError("Missing mattingUrl or backgroundUrl parameter", stage="fusion")
        ratio = _aspect_ratio_or_400(aspect_ratio)

        mode = (color_match or self.color_match_mode).strip().lower()
        if mode not in COLOR_MATCH_MODES:
            raise ValidationError(
                f"Unknown colorMatch '{color_match}', expected one of {', '.join(COLOR_MATCH_MODES)}",
                stage="fusion"
            )

        # Both downloads run to completion before the first failure is raised
        results = await asyncio.gather(
            download_image(self.client, background_url),
            download_image(self.client, matting_url),
            return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        background_bytes, matting_bytes = results

        with track_stage_latency("fusion"):
            fused = await asyncio.to_thread(self._fuse, matting_bytes, background_bytes, ratio, mode)

        url = await self.storage.upload_and_get_url(fused, "fused.png")
        return {"fusedUrl": url}
