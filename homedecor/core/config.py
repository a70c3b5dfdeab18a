"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.

Components never read ``settings`` directly: each one receives its own
config model (``ConformanceSettings``, ``MaskSettings``, ...) built from the
flat environment-backed fields below.
"""

from pathlib import Path
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


# =============================================================================
# Per-Component Config Models
# =============================================================================

class ConformanceSettings(BaseModel):
    """Limits imposed by the generation API on input images."""

    model_config = {"frozen": True}

    max_bytes: int = 4 * 1024 * 1024
    max_dimension: int = 4096
    min_dimension: int = 512
    fallback_dimension: int = 1024
    # Quality used by pass 2, 3, 4 and the fallback pass
    quality_steps: Tuple[int, int, int, int] = (100, 80, 60, 50)
    # Fraction of max_bytes aimed at by pass 2, 3 and 4
    target_headroom: Tuple[float, float, float] = (0.9, 0.8, 0.7)


class MaskSettings(BaseModel):
    """Global mask generation options (per-call overrides merge on top)."""

    model_config = {"frozen": True}

    segmentation_enabled: bool = False
    segmentation_url: Optional[str] = None
    segmentation_api_key: Optional[str] = None
    segmentation_timeout: float = 20.0
    multi_pass: bool = False
    feathering: bool = False
    feather_radius: int = 7
    high_confidence: float = 0.8
    medium_confidence: float = 0.6
    class_thresholds: Dict[str, float] = Field(default_factory=dict)
    structural_classes: Tuple[str, ...] = ("wall", "window", "ceiling", "floor")
    cache_ttl_seconds: int = 3600


class GenerationSettings(BaseModel):
    """External image generation API endpoint."""

    model_config = {"frozen": True}

    api_url: str = "https://api.openai.com/v1/images/edits"
    api_key: Optional[str] = None
    model: str = "dall-e-2"
    size: str = "1024x1024"
    timeout: float = 30.0
    download_timeout: float = 30.0


class OrchestratorSettings(BaseModel):
    """Request lifecycle policy."""

    model_config = {"frozen": True}

    credits_per_request: int = 1
    fetch_timeout: float = 30.0
    refund_on_failure: bool = False
    max_concurrent_pipelines: int = 4


# =============================================================================
# Environment-Backed Settings
# =============================================================================

class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Home Decor Redecoration Pipeline"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Infrastructure
    # ==========================================================================
    REDIS_URL: str = "redis://localhost:6379/2"
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/homedecor.db"

    # asyncio: in-process worker pool, celery: dispatch to Celery workers
    PIPELINE_BACKEND: str = "asyncio"
    MAX_CONCURRENT_PIPELINES: int = 4

    # ==========================================================================
    # Storage Settings
    # ==========================================================================
    LOCAL_STORAGE_PATH: str = "./data/storage"
    STORAGE_URL_PREFIX: str = "/static/storage"

    # ==========================================================================
    # Billing
    # ==========================================================================
    CREDITS_PER_REQUEST: int = 1
    REFUND_ON_FAILURE: bool = False
    MOCK_STARTING_CREDITS: int = 10

    # ==========================================================================
    # Source Image Fetch
    # ==========================================================================
    FETCH_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Conformance Limits (generation API input constraints)
    # ==========================================================================
    MAX_IMAGE_BYTES: int = 4 * 1024 * 1024  # 4MB
    MAX_IMAGE_DIMENSION: int = 4096
    MIN_IMAGE_DIMENSION: int = 512
    FALLBACK_IMAGE_DIMENSION: int = 1024

    # ==========================================================================
    # Mask Generation
    # ==========================================================================
    SEGMENTATION_ENABLED: bool = False
    SEGMENTATION_API_URL: Optional[str] = None
    SEGMENTATION_API_KEY: Optional[str] = None
    SEGMENTATION_TIMEOUT_SECONDS: float = 20.0
    MASK_MULTI_PASS: bool = False
    MASK_FEATHERING: bool = False
    MASK_FEATHER_RADIUS: int = 7
    MASK_HIGH_CONFIDENCE: float = 0.8
    MASK_MEDIUM_CONFIDENCE: float = 0.6
    MASK_CLASS_THRESHOLDS: Dict[str, float] = {}
    MASK_CACHE_TTL_SECONDS: int = 3600

    # ==========================================================================
    # Generation API
    # ==========================================================================
    GENERATION_API_URL: str = "https://api.openai.com/v1/images/edits"
    GENERATION_API_KEY: Optional[str] = None
    GENERATION_MODEL: str = "dall-e-2"
    GENERATION_SIZE: str = "1024x1024"
    GENERATION_TIMEOUT_SECONDS: float = 30.0
    GENERATION_DOWNLOAD_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Celery Settings
    # ==========================================================================
    CELERY_BROKER_URL: Optional[str] = None  # Falls back to REDIS_URL
    CELERY_RESULT_BACKEND: Optional[str] = None  # Falls back to REDIS_URL

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

    # ==========================================================================
    # Component Config Builders
    # ==========================================================================

    def conformance_settings(self) -> ConformanceSettings:
        return ConformanceSettings(
            max_bytes=self.MAX_IMAGE_BYTES,
            max_dimension=self.MAX_IMAGE_DIMENSION,
            min_dimension=self.MIN_IMAGE_DIMENSION,
            fallback_dimension=self.FALLBACK_IMAGE_DIMENSION,
        )

    def mask_settings(self) -> MaskSettings:
        return MaskSettings(
            segmentation_enabled=self.SEGMENTATION_ENABLED,
            segmentation_url=self.SEGMENTATION_API_URL,
            segmentation_api_key=self.SEGMENTATION_API_KEY,
            segmentation_timeout=self.SEGMENTATION_TIMEOUT_SECONDS,
            multi_pass=self.MASK_MULTI_PASS,
            feathering=self.MASK_FEATHERING,
            feather_radius=self.MASK_FEATHER_RADIUS,
            high_confidence=self.MASK_HIGH_CONFIDENCE,
            medium_confidence=self.MASK_MEDIUM_CONFIDENCE,
            class_thresholds=dict(self.MASK_CLASS_THRESHOLDS),
            cache_ttl_seconds=self.MASK_CACHE_TTL_SECONDS,
        )

    def generation_settings(self) -> GenerationSettings:
        return GenerationSettings(
            api_url=self.GENERATION_API_URL,
            api_key=self.GENERATION_API_KEY,
            model=self.GENERATION_MODEL,
            size=self.GENERATION_SIZE,
            timeout=self.GENERATION_TIMEOUT_SECONDS,
            download_timeout=self.GENERATION_DOWNLOAD_TIMEOUT_SECONDS,
        )

    def orchestrator_settings(self) -> OrchestratorSettings:
        return OrchestratorSettings(
            credits_per_request=self.CREDITS_PER_REQUEST,
            fetch_timeout=self.FETCH_TIMEOUT_SECONDS,
            refund_on_failure=self.REFUND_ON_FAILURE,
            max_concurrent_pipelines=self.MAX_CONCURRENT_PIPELINES,
        )


# Global settings instance
settings = Settings()

# Ensure critical directories exist
Path(settings.LOCAL_STORAGE_PATH).mkdir(parents=True, exist_ok=True)
Path("./data").mkdir(parents=True, exist_ok=True)
