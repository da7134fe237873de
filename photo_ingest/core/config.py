"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.

Tier policies are not settings: they live in the fixed table in
photo_ingest.modules.photos.tiers.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Tiered Photo Ingestion Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Storage Settings (The Bridge Pattern)
    # ==========================================================================
    # "local" writes to disk, "supabase" talks to the Supabase Storage API
    STORAGE_BACKEND: str = "local"

    # Local storage path (development)
    LOCAL_STORAGE_PATH: str = "./data/storage"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # Supabase Storage (production)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = None
    STORAGE_TIMEOUT_SECONDS: float = 30.0

    # Bucket per rendition kind
    BUCKET_FULL_RES: str = "photos-full-res"
    BUCKET_PREVIEW: str = "photos-preview"
    BUCKET_THUMBNAIL: str = "photos-thumbnail"
    BUCKET_WATERMARKED: str = "photos-watermarked"

    # ==========================================================================
    # Pipeline Settings
    # ==========================================================================
    # Delete renditions already written when a later step aborts the upload
    ROLLBACK_PARTIAL_UPLOADS: bool = False
    MAX_BATCH_FILES: int = 50

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


# Global settings instance
settings = Settings()
