"""
Stability AI client

- remove_background: /v2beta/stable-image/edit/remove-background (retried on 5xx)
- generate: /v2beta/stable-image/generate/sd3 (single attempt)
"""

import base64
import binascii
from typing import Optional

import httpx

from photofusion.core.config import Settings
from photofusion.core.exceptions import ExternalAPIError, UpstreamTimeoutError
from photofusion.core.http import fetch_with_retry
from photofusion.core.logging import get_logger
from photofusion.core.metrics import record_upstream_call, track_stage_latency

logger = get_logger(__name__)

SERVICE = "stability"


class StabilityClient:
    REMOVE_BACKGROUND_PATH = "/v2beta/stable-image/edit/remove-background"
    GENERATE_PATH = "/v2beta/stable-image/generate/sd3"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        base_url: str = "https://api.stability.ai",
        retries: int = 3,
        retry_delay: float = 1.5
    ):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.retry_delay = retry_delay

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, config: Settings) -> "StabilityClient":
        return cls(
            client,
            api_key=config.STABILITY_API_KEY,
            base_url=config.STABILITY_API_BASE,
            retries=config.UPSTREAM_RETRIES,
            retry_delay=config.UPSTREAM_RETRY_DELAY_SECONDS
        )

    def _auth_headers(self, accept: str) -> dict:
        if not self.api_key:
            raise ExternalAPIError("STABILITY_API_KEY is not configured", service=SERVICE)
        return {"Authorization": f"Bearer {self.api_key}", "Accept": accept}

    async def remove_background(self, image_bytes: bytes, filename: str = "image.png") -> bytes:
        """Return the cutout PNG produced by Stability's background removal."""
        headers = self._auth_headers("application/json")

        with track_stage_latency("stability_remove_background"):
            response = await fetch_with_retry(
                self.client,
                "POST",
                f"{self.base_url}{self.REMOVE_BACKGROUND_PATH}",
                service=SERVICE,
                retries=self.retries,
                delay=self.retry_delay,
                headers=headers,
                files={"image": (filename, image_bytes)},
                data={"output_format": "png"},
            )

        if not response.is_success:
            logger.error(
                "stability_remove_background_failed",
                http_status=response.status_code,
                body=response.text[:500]
            )
            raise ExternalAPIError(
                f"Background removal failed: {response.reason_phrase or response.status_code}",
                service=SERVICE,
                http_status=response.status_code,
                upstream_error=response.text[:500]
            )

        try:
            return base64.b64decode(response.json()["image"])
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            raise ExternalAPIError(
                "Background removal returned an unexpected payload",
                service=SERVICE,
                http_status=response.status_code
            ) from e

    async def generate(self, prompt: str, width: int, height: int) -> bytes:
        """Synchronous SD3 text-to-image; returns the raw image bytes."""
        headers = self._auth_headers("image/*")
        logger.info("stability_generate", width=width, height=height, prompt_length=len(prompt))

        try:
            with track_stage_latency("stability_generate"):
                response = await self.client.post(
                    f"{self.base_url}{self.GENERATE_PATH}",
                    headers=headers,
                    # multipart/form-data without files
                    files={
                        "prompt": (None, prompt),
                        "output_format": (None, "png"),
                        "width": (None, str(width)),
                        "height": (None, str(height)),
                    },
                )
        except httpx.TimeoutException as e:
            record_upstream_call(SERVICE, "network")
            raise UpstreamTimeoutError("Background generation timed out", service=SERVICE) from e
        except httpx.HTTPError as e:
            record_upstream_call(SERVICE, "network")
            raise ExternalAPIError(f"Background generation failed: {e}", service=SERVICE) from e

        record_upstream_call(SERVICE, response.status_code)
        if not response.is_success:
            logger.error(
                "stability_generate_failed",
                http_status=response.status_code,
                body=response.text[:500]
            )
            raise ExternalAPIError(
                "Background generation failed, check the prompt or contact support",
                service=SERVICE,
                http_status=response.status_code,
                upstream_error=response.text[:500]
            )
        return response.content
