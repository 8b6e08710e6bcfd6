"""
PiAPI client - task based text-to-image generation.

A task is created, then polled with a fixed budget (sleep, then check)
until it completes, fails, or the budget runs out.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from photofusion.core.config import Settings
from photofusion.core.exceptions import ExternalAPIError, UpstreamTimeoutError
from photofusion.core.http import download_image
from photofusion.core.logging import get_logger
from photofusion.core.metrics import record_poll_attempts, record_upstream_call, track_stage_latency

logger = get_logger(__name__)

SERVICE = "piapi"

COMPLETED = "completed"
FAILED = "failed"


class PiAPIClient:
    TASK_PATH = "/api/v1/task"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        base_url: str = "https://api.piapi.ai",
        model: str = "Qubico/flux1-dev",
        task_type: str = "txt2img",
        poll_interval: float = 3.0,
        max_poll_attempts: int = 40
    ):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.task_type = task_type
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, config: Settings) -> "PiAPIClient":
        return cls(
            client,
            api_key=config.PIAPI_API_KEY,
            base_url=config.PIAPI_API_BASE,
            model=config.PIAPI_MODEL,
            task_type=config.PIAPI_TASK_TYPE,
            poll_interval=config.PIAPI_POLL_INTERVAL_SECONDS,
            max_poll_attempts=config.PIAPI_MAX_POLL_ATTEMPTS
        )

    def _headers(self) -> dict:
        if not self.api_key:
            raise ExternalAPIError("PIAPI_API_KEY is not configured", service=SERVICE)
        return {"x-api-key": self.api_key, "Content-Type": "application/json"}

    async def _call(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """Send a request and return the "data" object of the JSON envelope."""
        try:
            response = await self.client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            record_upstream_call(SERVICE, "network")
            raise UpstreamTimeoutError("PiAPI request timed out", service=SERVICE) from e
        except httpx.HTTPError as e:
            record_upstream_call(SERVICE, "network")
            raise ExternalAPIError(f"PiAPI request failed: {e}", service=SERVICE) from e

        record_upstream_call(SERVICE, response.status_code)
        if not response.is_success:
            raise ExternalAPIError(
                "PiAPI request failed",
                service=SERVICE,
                http_status=response.status_code,
                upstream_error=response.text[:500]
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalAPIError(
                f"Non-JSON response from PiAPI: {response.text[:200]}",
                service=SERVICE,
                http_status=response.status_code
            ) from e

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise ExternalAPIError(
                payload.get("message", "PiAPI response has no data") if isinstance(payload, dict)
                else "PiAPI response has no data",
                service=SERVICE,
                http_status=response.status_code
            )
        return data

    async def create_task(self, prompt: str, width: int, height: int) -> str:
        data = await self._call(
            "POST",
            f"{self.base_url}{self.TASK_PATH}",
            json={
                "model": self.model,
                "task_type": self.task_type,
                "input": {"prompt": prompt, "width": width, "height": height},
            },
        )
        task_id = data.get("task_id")
        if not task_id:
            raise ExternalAPIError("PiAPI did not return a task_id", service=SERVICE)
        logger.info("piapi_task_created", task_id=task_id, width=width, height=height)
        return task_id

    async def wait_for_task(self, task_id: str) -> Dict[str, Any]:
        """Poll until the task completes. Returns the task's "output" object."""
        for attempt in range(1, self.max_poll_attempts + 1):
            await asyncio.sleep(self.poll_interval)
            data = await self._call("GET", f"{self.base_url}{self.TASK_PATH}/{task_id}")
            status = str(data.get("status", "")).lower()
            logger.debug("piapi_task_polled", task_id=task_id, attempt=attempt, status=status)

            if status == COMPLETED:
                record_poll_attempts(SERVICE, "completed", attempt)
                return data.get("output") or {}

            if status == FAILED:
                record_poll_attempts(SERVICE, "failed", attempt)
                error = data.get("error") or {}
                message = error.get("message") if isinstance(error, dict) else str(error)
                raise ExternalAPIError(
                    f"Background generation task failed: {message or 'unknown error'}",
                    service=SERVICE,
                    upstream_error=message
                )

        record_poll_attempts(SERVICE, "timeout", self.max_poll_attempts)
        logger.error("piapi_task_timeout", task_id=task_id, attempts=self.max_poll_attempts)
        raise UpstreamTimeoutError(
            f"Background generation did not finish after {self.max_poll_attempts} checks",
            service=SERVICE,
            details={"task_id": task_id}
        )

    async def generate(self, prompt: str, width: int, height: int) -> bytes:
        with track_stage_latency("piapi_generate"):
            task_id = await self.create_task(prompt, width, height)
            output = await self.wait_for_task(task_id)

            image_url = output.get("image_url")
            if not image_url and output.get("image_urls"):
                image_url = output["image_urls"][0]
            if not image_url:
                raise ExternalAPIError(
                    "Generation task completed without an image",
                    service=SERVICE,
                    details={"task_id": task_id}
                )

            return await download_image(self.client, image_url, service=SERVICE)
