"""Configuration loading with project file support."""

import json
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..errors import ConfigurationError
from ..extractor_logging import get_logger
from .models import ExtractorConfig

logger = get_logger()

CONFIG_FILENAME = "design-extractor.config.json"

# Environment variable -> dotted config key
ENV_VARS = {
    "OPENAI_API_KEY": "openai_api_key",
    "OPENAI_BASE_URL": "openai_base_url",
    "DESIGN_EXTRACTOR_VISION_MODEL": "vision_model",
    "DESIGN_EXTRACTOR_BACKEND": "checkpoint_backend",
    "DESIGN_EXTRACTOR_CHECKPOINT_DIR": "checkpoint_dir",
    "DESIGN_EXTRACTOR_DATABASE_URL": "database.url",
    "DESIGN_EXTRACTOR_DB_POOL_SIZE": "database.pool_size",
    "DESIGN_EXTRACTOR_DB_MAX_OVERFLOW": "database.max_overflow",
    "DESIGN_EXTRACTOR_LOG_LEVEL": "log_level",
    "DESIGN_EXTRACTOR_LOG_FORMAT": "log_format",
}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``updates`` into ``base`` and return ``base``."""
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _set_dotted(target: dict[str, Any], dotted_key: str, value: Any) -> None:
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


class ConfigLoader:
    """Configuration loader with project-level support."""

    def __init__(
        self,
        project_path: Path | None = None,
        config_file: Path | None = None,
    ):
        self.project_path = Path(project_path) if project_path else Path.cwd()
        # Optional explicit config file that replaces the project file
        self._config_file_override = config_file

    @property
    def config_path(self) -> Path:
        """Path of the JSON config file this loader reads."""
        if self._config_file_override is not None:
            return self._config_file_override
        return self.project_path / CONFIG_FILENAME

    def load(self, **overrides: Any) -> ExtractorConfig:
        """Load configuration from all sources.

        Precedence (highest to lowest):
        1. Explicit overrides
        2. Environment variables
        3. Config file (design-extractor.config.json)
        4. Defaults

        Raises:
            ConfigurationError: If the file is unreadable or a value is invalid.
        """
        config_dict: dict[str, Any] = {"checkpoint_dir": str(self.project_path)}

        # 1. Config file
        file_settings = self._load_file()
        _deep_merge(config_dict, file_settings)
        if file_settings:
            logger.debug(
                f"Loaded {len(file_settings)} settings from {self.config_path}"
            )

        # 2. Environment variables
        env_count = 0
        for env_name, dotted_key in ENV_VARS.items():
            value = os.environ.get(env_name)
            if value:
                _set_dotted(config_dict, dotted_key, value)
                env_count += 1
        if env_count > 0:
            logger.debug(f"Applied {env_count} environment variables")

        # 3. Explicit overrides (highest priority), None means "not given"
        explicit = {k: v for k, v in overrides.items() if v is not None}
        _deep_merge(config_dict, explicit)
        if explicit:
            logger.debug(f"Applied {len(explicit)} explicit overrides")

        try:
            return ExtractorConfig(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                config_file=str(self.config_path),
            ) from e

    def _load_file(self) -> dict[str, Any]:
        path = self.config_path
        if not path.exists():
            if self._config_file_override is not None:
                raise ConfigurationError(
                    f"Config file not found: {path}",
                    config_file=str(path),
                    suggestion="Check the --config path",
                )
            return {}

        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in config file: {e}",
                config_file=str(path),
            ) from e
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read config file: {e}",
                config_file=str(path),
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Config file must contain a JSON object",
                config_file=str(path),
            )
        return data


def load_config(
    config_path: Path | None = None, **overrides: Any
) -> ExtractorConfig:
    """Load configuration from multiple sources with precedence.

    Args:
        config_path: A project directory or an explicit config file.
        **overrides: Explicit configuration overrides.

    Returns:
        Configured ExtractorConfig instance.
    """
    if config_path is not None and config_path.is_dir():
        loader = ConfigLoader(project_path=config_path)
    elif config_path is not None:
        loader = ConfigLoader(project_path=config_path.parent, config_file=config_path)
    else:
        loader = ConfigLoader()
    return loader.load(**overrides)
