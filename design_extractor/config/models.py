"""Configuration models for the extraction pipeline."""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from ..extractor_logging import get_logger

logger = get_logger()


class DatabaseSettings(BaseModel):
    """Connection settings for the database checkpoint backend."""

    url: str = Field(default="sqlite:///design-extractor.db")
    pool_size: int = Field(default=5, ge=1, le=100)
    max_overflow: int = Field(default=10, ge=0, le=100)
    connect_timeout: int = Field(default=10, ge=1, le=600)  # seconds
    echo: bool = Field(default=False)


class CaptureSettings(BaseModel):
    """Browser capture defaults."""

    viewport_width: int = Field(default=1440, ge=1, le=10000)
    viewport_height: int = Field(default=900, ge=1, le=10000)
    wait_for_network_idle: bool = Field(default=True)
    timeout_ms: int = Field(default=30000, ge=1)
    stitch: bool = Field(default=True)
    max_height: int = Field(default=20000, ge=1)
    scroll_delay_ms: int = Field(default=100, ge=0)


class ComparisonSettings(BaseModel):
    """Visual comparison scoring defaults."""

    ssim_weight: float = Field(default=0.6, ge=0.0)
    color_weight: float = Field(default=0.4, ge=0.0)
    pass_threshold: float = Field(default=0.95, ge=0.0)  # deliberately unbounded above
    diff_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    buckets: int = Field(default=256, ge=1, le=256)
    ignore_alpha: bool = Field(default=True)
    generate_diff: bool = Field(default=True)
    include_aa: bool = Field(default=False)


class ExtractorConfig(BaseModel):
    """Global configuration model with validation."""

    # API Keys / Endpoints
    openai_api_key: str = Field(default="")
    openai_base_url: str | None = Field(default=None)

    # Capabilities
    vision_model: str = Field(default="gpt-4o-mini")
    vision_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    vision_max_tokens: int = Field(default=4096, ge=1)

    # Storage
    checkpoint_backend: Literal["filesystem", "database"] = Field(default="filesystem")
    checkpoint_dir: Path = Field(default_factory=Path.cwd)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    # Stages
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    comparison: ComparisonSettings = Field(default_factory=ComparisonSettings)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")

    @model_validator(mode="after")
    def _normalize_log_level(self) -> "ExtractorConfig":
        self.log_level = self.log_level.upper()
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {self.log_level}")
        return self

    @property
    def has_vision(self) -> bool:
        """True when an API key for the multimodal capability is configured."""
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> "ExtractorConfig":
        """Create config with environment variable overrides."""
        database = DatabaseSettings(
            url=os.environ.get(
                "DESIGN_EXTRACTOR_DATABASE_URL", "sqlite:///design-extractor.db"
            ),
            pool_size=int(os.environ.get("DESIGN_EXTRACTOR_DB_POOL_SIZE", "5")),
            max_overflow=int(os.environ.get("DESIGN_EXTRACTOR_DB_MAX_OVERFLOW", "10")),
        )
        return cls(
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_base_url=os.environ.get("OPENAI_BASE_URL") or None,
            vision_model=os.environ.get("DESIGN_EXTRACTOR_VISION_MODEL", "gpt-4o-mini"),
            checkpoint_backend=os.environ.get(
                "DESIGN_EXTRACTOR_BACKEND", "filesystem"
            ),
            database=database,
            log_level=os.environ.get("DESIGN_EXTRACTOR_LOG_LEVEL", "INFO"),
        )
