import io
import os
import tempfile
from typing import AsyncGenerator, Callable, Dict, List, Tuple

# Keep the app's local storage mount out of the working tree
os.environ.setdefault("LOCAL_STORAGE_PATH", tempfile.mkdtemp(prefix="photofusion-test-"))

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from photofusion.core.config import Settings
from photofusion.core.storage import IStorage, make_object_key, get_storage
from photofusion.api.dependencies import get_http_client, get_settings
from photofusion.main import app

STORAGE_BASE_URL = "https://storage.test/public"


class InMemoryStorage(IStorage):
    """IStorage keeping objects in a dict; URLs are served by MockUpstream."""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    async def upload(self, file_data: bytes, filename: str, content_type: str = "image/png") -> str:
        key = make_object_key(filename)
        self.objects[key] = (file_data, content_type)
        return key

    def get_url(self, storage_key: str) -> str:
        return f"{STORAGE_BASE_URL}/{storage_key}"

    def read_url(self, url: str) -> bytes:
        return self.objects[url[len(STORAGE_BASE_URL) + 1:]][0]


class MockUpstream:
    """
    httpx.MockTransport handler.

    Responses are queued per (method, url) and consumed in order. GETs under
    STORAGE_BASE_URL are served from the in-memory storage.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage
        self.routes: Dict[Tuple[str, str], List] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, *responses):
        """Queue responses: httpx.Response, an exception to raise, or a callable(request)."""
        self.routes.setdefault((method, url), []).extend(responses)

    def count(self, method: str, url: str) -> int:
        return sum(1 for r in self.requests if r.method == method and str(r.url) == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if request.method == "GET" and url.startswith(STORAGE_BASE_URL):
            key = url[len(STORAGE_BASE_URL) + 1:]
            if key not in self.storage.objects:
                return httpx.Response(404, text="object not found")
            return httpx.Response(200, content=self.storage.objects[key][0])

        queue = self.routes.get((request.method, url))
        if not queue:
            return httpx.Response(404, text=f"no mock for {request.method} {url}")

        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item


def _make_png(
    size: Tuple[int, int] = (64, 48),
    color=(255, 0, 0, 255),
    mode: str = "RGBA",
    fmt: str = "PNG",
) -> bytes:
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    return _make_png


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def upstream(storage) -> MockUpstream:
    return MockUpstream(storage)


@pytest.fixture
async def http_client(upstream) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as c:
        yield c


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        STABILITY_API_KEY="sk-test",
        PIAPI_API_KEY="pi-test",
        OPENROUTER_API_KEY=None,
        SUPABASE_URL=None,
        SUPABASE_SERVICE_ROLE_KEY=None,
        BACKGROUND_PROVIDER="stability",
        UPSTREAM_RETRY_DELAY_SECONDS=0.0,
        PIAPI_POLL_INTERVAL_SECONDS=0.0,
        LOCAL_STORAGE_PATH=str(tmp_path),
    )


@pytest.fixture
async def client(test_settings, storage, http_client) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_http_client] = lambda: http_client

    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()
