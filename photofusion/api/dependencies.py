"""
FastAPI Dependencies

Provides dependency injection for:
- Settings (global instance, overridable in tests)
- Shared httpx.AsyncClient (created in the app lifespan)
- Storage (singleton from StorageFactory)
- Matting / Fusion services (per-request, cheap to build)
"""

import httpx
from fastapi import Depends, Request

from photofusion.core.config import settings, Settings
from photofusion.core.storage import get_storage, IStorage
from photofusion.engines.stability import StabilityClient
from photofusion.services.fusion import FusionService
from photofusion.services.matting import MattingService


def get_settings() -> Settings:
    return settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Pooled client shared by every upstream call of the process."""
    return request.app.state.http_client


def get_matting_service(
    client: httpx.AsyncClient = Depends(get_http_client),
    storage: IStorage = Depends(get_storage),
    config: Settings = Depends(get_settings),
) -> MattingService:
    return MattingService(
        storage=storage,
        remover=StabilityClient.from_settings(client, config),
        max_edge=config.MATTING_MAX_EDGE,
        max_upload_bytes=config.MAX_IMAGE_SIZE_BYTES
    )


def get_fusion_service(
    client: httpx.AsyncClient = Depends(get_http_client),
    storage: IStorage = Depends(get_storage),
    config: Settings = Depends(get_settings),
) -> FusionService:
    return FusionService.from_settings(storage, client, config)
