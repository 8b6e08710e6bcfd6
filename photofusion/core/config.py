"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Photo Fusion Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Storage Settings (The Bridge Pattern)
    # ==========================================================================
    # Supabase Storage (production) - used when both URL and key are set
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    SUPABASE_BUCKET: str = "fusion-images"

    # Local storage path (development)
    LOCAL_STORAGE_PATH: str = "./data/storage"
    # Base URL the local files are served from (see /static/storage mount)
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # ==========================================================================
    # Upstream APIs
    # ==========================================================================
    # Stability AI - background removal + synchronous SD3 generation
    STABILITY_API_KEY: Optional[str] = None
    STABILITY_API_BASE: str = "https://api.stability.ai"

    # Which provider generates backgrounds: "stability" or "piapi"
    BACKGROUND_PROVIDER: str = "stability"

    # PiAPI - task based generation, polled until completion
    PIAPI_API_KEY: Optional[str] = None
    PIAPI_API_BASE: str = "https://api.piapi.ai"
    PIAPI_MODEL: str = "Qubico/flux1-dev"
    PIAPI_TASK_TYPE: str = "txt2img"
    PIAPI_POLL_INTERVAL_SECONDS: float = 3.0
    PIAPI_MAX_POLL_ATTEMPTS: int = 40

    # OpenRouter - optional prompt expansion (disabled when key is unset)
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_API_BASE: str = "https://openrouter.ai/api/v1"
    OPENROUTER_MODEL: str = "openai/gpt-4o-mini"

    # ==========================================================================
    # HTTP Settings
    # ==========================================================================
    HTTP_TIMEOUT_SECONDS: float = 60.0
    UPSTREAM_RETRIES: int = 3
    UPSTREAM_RETRY_DELAY_SECONDS: float = 1.5

    # ==========================================================================
    # Imaging Settings
    # ==========================================================================
    MAX_IMAGE_SIZE_BYTES: int = 10485760  # 10MB
    MATTING_MAX_EDGE: int = 1280
    GENERATION_SIZE_MULTIPLE: int = 64
    PROMPT_QUALITY_SUFFIX: str = (
        "masterpiece, best quality, ultra-detailed, photorealistic, 8k, sharp focus"
    )
    COLOR_MATCH_MODE: str = "tint"  # tint, soft-light, none
    SOFT_LIGHT_OPACITY: float = 0.5

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)


# Global settings instance
settings = Settings()

# Ensure critical directories exist
Path(settings.LOCAL_STORAGE_PATH).mkdir(parents=True, exist_ok=True)
