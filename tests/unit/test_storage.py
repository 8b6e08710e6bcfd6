import httpx
import pytest

from photofusion.core.config import Settings
from photofusion.core.exceptions import StorageError
from photofusion.core.storage import (
    LocalStorage,
    StorageFactory,
    SupabaseStorage,
    make_object_key,
)

SUPABASE_URL = "https://project.supabase.co"


def test_make_object_key_prefixes_uuid_and_strips_directories():
    key = make_object_key("../../etc/my photo.png")

    assert key.endswith("-my_photo.png")
    assert len(key) == 36 + 1 + len("my_photo.png")


@pytest.mark.asyncio
async def test_supabase_upload_posts_to_bucket():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json={"Key": "fusion-images/x"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        storage = SupabaseStorage(SUPABASE_URL, "service-key", bucket="fusion-images", client=client)
        url = await storage.upload_and_get_url(b"png-bytes", "matted.png")

    request = seen["request"]
    assert request.method == "POST"
    assert request.url.path.startswith("/storage/v1/object/fusion-images/")
    assert request.url.path.endswith("-matted.png")
    assert request.headers["Authorization"] == "Bearer service-key"
    assert request.headers["Content-Type"] == "image/png"
    assert request.content == b"png-bytes"

    key = request.url.path.rsplit("/", 1)[-1]
    assert url == f"{SUPABASE_URL}/storage/v1/object/public/fusion-images/{key}"


@pytest.mark.asyncio
async def test_supabase_upload_error_raises_storage_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "Duplicate"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        storage = SupabaseStorage(SUPABASE_URL, "service-key", client=client)
        with pytest.raises(StorageError) as exc_info:
            await storage.upload(b"data", "fused.png")

    assert exc_info.value.code == 500
    assert exc_info.value.details["http_status"] == 400


@pytest.mark.asyncio
async def test_local_storage_writes_file(tmp_path):
    storage = LocalStorage(base_path=str(tmp_path), public_base_url="http://localhost:8000/")

    key = await storage.upload(b"abc", "background.png")

    assert (tmp_path / key).read_bytes() == b"abc"
    assert storage.get_url(key) == f"http://localhost:8000/static/storage/{key}"


def test_factory_prefers_supabase_when_configured(tmp_path):
    config = Settings(
        SUPABASE_URL=SUPABASE_URL,
        SUPABASE_SERVICE_ROLE_KEY="service-key",
        LOCAL_STORAGE_PATH=str(tmp_path),
    )

    storage = StorageFactory.create(config)

    assert isinstance(storage, SupabaseStorage)
    assert storage.bucket == "fusion-images"


def test_factory_falls_back_to_local(tmp_path):
    config = Settings(
        SUPABASE_URL=None,
        SUPABASE_SERVICE_ROLE_KEY=None,
        LOCAL_STORAGE_PATH=str(tmp_path),
    )

    assert isinstance(StorageFactory.create(config), LocalStorage)


@pytest.mark.asyncio
async def test_factory_init_uploads_through_shared_client(tmp_path):
    config = Settings(
        SUPABASE_URL=SUPABASE_URL,
        SUPABASE_SERVICE_ROLE_KEY="service-key",
        LOCAL_STORAGE_PATH=str(tmp_path),
    )
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": "fusion-images/x"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        try:
            storage = StorageFactory.init(client, config)
            assert StorageFactory.get_storage() is storage
            assert storage._client is client

            await storage.upload(b"one", "a.png")
            await storage.upload(b"two", "b.png")
        finally:
            StorageFactory.close()

    assert [r.content for r in seen] == [b"one", b"two"]
    assert StorageFactory._instance is None
