"""
Upstream HTTP helpers shared by the API clients.

fetch_with_retry retries 5xx responses and network errors with a fixed
delay; 2xx and 4xx responses are handed back immediately.
"""

import asyncio

import httpx

from photofusion.core.logging import get_logger
from photofusion.core.metrics import record_upstream_call, record_upstream_retry
from photofusion.core.exceptions import ExternalAPIError, UpstreamTimeoutError

logger = get_logger(__name__)


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    service: str,
    retries: int = 3,
    delay: float = 1.5,
    **kwargs
) -> httpx.Response:
    """
    Send a request, retrying on 5xx and transport errors.

    Returns the last response once it is not a 5xx, or once all attempts
    are used up (callers decide how to report a final 5xx). A transport
    error on the last attempt is raised as ExternalAPIError, or
    UpstreamTimeoutError when the request timed out.
    """
    retries = max(1, retries)

    for attempt in range(1, retries + 1):
        logger.info("upstream_request", service=service, attempt=attempt, retries=retries)
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            record_upstream_call(service, "network")
            if attempt == retries:
                if isinstance(e, httpx.TimeoutException):
                    raise UpstreamTimeoutError(
                        f"{service} request timed out",
                        service=service
                    ) from e
                raise ExternalAPIError(
                    f"{service} request failed: {e}",
                    service=service
                ) from e
            logger.warning(
                "upstream_network_error",
                service=service,
                attempt=attempt,
                error=str(e),
                retry_in_seconds=delay
            )
            record_upstream_retry(service, "network")
        else:
            record_upstream_call(service, response.status_code)
            if response.status_code < 500 or attempt == retries:
                return response
            logger.warning(
                "upstream_server_error",
                service=service,
                attempt=attempt,
                http_status=response.status_code,
                retry_in_seconds=delay
            )
            record_upstream_retry(service, "server_error")

        await asyncio.sleep(delay)

    # range() above always returns or raises on its last iteration
    raise ExternalAPIError(f"{service}: all retry attempts failed", service=service)


async def download_image(
    client: httpx.AsyncClient,
    url: str,
    *,
    service: str = "download"
) -> bytes:
    """Fetch an image URL and return its body. No retry."""
    try:
        response = await client.get(url, follow_redirects=True)
    except httpx.TimeoutException as e:
        record_upstream_call(service, "network")
        raise UpstreamTimeoutError(f"Timed out downloading {url}", service=service) from e
    except httpx.HTTPError as e:
        record_upstream_call(service, "network")
        raise ExternalAPIError(f"Could not download {url}: {e}", service=service) from e

    record_upstream_call(service, response.status_code)
    if not response.is_success:
        raise ExternalAPIError(
            f"Could not download {url}",
            service=service,
            http_status=response.status_code,
            upstream_error=response.text[:500]
        )
    return response.content
