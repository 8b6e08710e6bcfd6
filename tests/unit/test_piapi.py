import json

import httpx
import pytest

from photofusion.core.exceptions import ExternalAPIError, UpstreamTimeoutError
from photofusion.engines.piapi import PiAPIClient

BASE = "https://api.piapi.ai"
TASK_URL = f"{BASE}/api/v1/task"
STATUS_URL = f"{TASK_URL}/task-123"
IMAGE_URL = "https://img.piapi.test/out.png"


def _task(status, output=None, error=None):
    data = {"task_id": "task-123", "status": status}
    if output is not None:
        data["output"] = output
    if error is not None:
        data["error"] = error
    return httpx.Response(200, json={"code": 200, "data": data, "message": "success"})


@pytest.fixture
def piapi(http_client):
    return PiAPIClient(http_client, api_key="pi-test", base_url=BASE, poll_interval=0, max_poll_attempts=3)


@pytest.mark.asyncio
async def test_generate_polls_until_completed(piapi, upstream):
    upstream.add("POST", TASK_URL, _task("pending"))
    upstream.add(
        "GET",
        STATUS_URL,
        _task("pending"),
        _task("processing"),
        _task("completed", output={"image_url": IMAGE_URL}),
    )
    upstream.add("GET", IMAGE_URL, httpx.Response(200, content=b"generated"))

    result = await piapi.generate("a forest", 1024, 768)

    assert result == b"generated"
    assert upstream.count("GET", STATUS_URL) == 3

    create = upstream.requests[0]
    assert create.headers["x-api-key"] == "pi-test"
    body = json.loads(create.content)
    assert body["model"] == "Qubico/flux1-dev"
    assert body["task_type"] == "txt2img"
    assert body["input"] == {"prompt": "a forest", "width": 1024, "height": 768}


@pytest.mark.asyncio
async def test_generate_uses_first_of_image_urls(piapi, upstream):
    upstream.add("POST", TASK_URL, _task("pending"))
    upstream.add("GET", STATUS_URL, _task("completed", output={"image_urls": [IMAGE_URL, "https://other"]}))
    upstream.add("GET", IMAGE_URL, httpx.Response(200, content=b"first"))

    assert await piapi.generate("a forest", 512, 512) == b"first"


@pytest.mark.asyncio
async def test_failed_task_raises_with_upstream_message(piapi, upstream):
    upstream.add("POST", TASK_URL, _task("pending"))
    upstream.add("GET", STATUS_URL, _task("failed", error={"message": "nsfw prompt"}))

    with pytest.raises(ExternalAPIError) as exc_info:
        await piapi.generate("a forest", 512, 512)

    assert "nsfw prompt" in exc_info.value.message
    assert exc_info.value.code == 502


@pytest.mark.asyncio
async def test_poll_budget_exhausted_raises_504(piapi, upstream):
    upstream.add("POST", TASK_URL, _task("pending"))
    upstream.add("GET", STATUS_URL, *[_task("processing") for _ in range(3)])

    with pytest.raises(UpstreamTimeoutError) as exc_info:
        await piapi.generate("a forest", 512, 512)

    assert exc_info.value.code == 504
    assert exc_info.value.details["task_id"] == "task-123"
    assert upstream.count("GET", STATUS_URL) == 3


@pytest.mark.asyncio
async def test_create_task_error_is_surfaced(piapi, upstream):
    upstream.add("POST", TASK_URL, httpx.Response(401, text="invalid api key"))

    with pytest.raises(ExternalAPIError) as exc_info:
        await piapi.generate("a forest", 512, 512)

    assert exc_info.value.details["http_status"] == 401
    assert "invalid api key" in exc_info.value.details["upstream_error"]


@pytest.mark.asyncio
async def test_completed_without_image_raises(piapi, upstream):
    upstream.add("POST", TASK_URL, _task("pending"))
    upstream.add("GET", STATUS_URL, _task("completed", output={}))

    with pytest.raises(ExternalAPIError):
        await piapi.generate("a forest", 512, 512)
