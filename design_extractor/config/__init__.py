"""Configuration package.

Configuration Precedence (highest to lowest):
1. Explicit overrides
2. Environment variables
3. Project config (design-extractor.config.json)
4. Defaults
"""

from .config_loader import CONFIG_FILENAME, ConfigLoader, load_config
from .models import (
    CaptureSettings,
    ComparisonSettings,
    DatabaseSettings,
    ExtractorConfig,
)

__all__ = [
    "CONFIG_FILENAME",
    "CaptureSettings",
    "ComparisonSettings",
    "ConfigLoader",
    "DatabaseSettings",
    "ExtractorConfig",
    "load_config",
]
