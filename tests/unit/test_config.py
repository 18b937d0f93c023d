"""Unit tests for configuration management."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from design_extractor.config import (
    CONFIG_FILENAME,
    ComparisonSettings,
    ConfigLoader,
    ExtractorConfig,
    load_config,
)
from design_extractor.errors import ConfigurationError


def _write_config(directory: Path, data) -> Path:
    path = directory / CONFIG_FILENAME
    path.write_text(json.dumps(data))
    return path


class TestExtractorConfig:
    """Test the ExtractorConfig pydantic model."""

    def test_default_values(self):
        config = ExtractorConfig()

        assert config.openai_api_key == ""
        assert config.checkpoint_backend == "filesystem"
        assert config.capture.viewport_width == 1440
        assert config.capture.viewport_height == 900
        assert config.comparison.ssim_weight == 0.6
        assert config.comparison.color_weight == 0.4
        assert config.comparison.pass_threshold == 0.95
        assert config.log_level == "INFO"
        assert not config.has_vision

    def test_log_level_normalized(self):
        assert ExtractorConfig(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            ExtractorConfig(log_level="chatty")

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            ExtractorConfig(checkpoint_backend="s3")

    def test_pass_threshold_not_clamped_above_one(self):
        assert ComparisonSettings(pass_threshold=1.5).pass_threshold == 1.5

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test123")
        monkeypatch.setenv("DESIGN_EXTRACTOR_BACKEND", "database")
        monkeypatch.setenv("DESIGN_EXTRACTOR_DB_POOL_SIZE", "7")

        config = ExtractorConfig.from_env()

        assert config.openai_api_key == "sk-test123"
        assert config.has_vision
        assert config.checkpoint_backend == "database"
        assert config.database.pool_size == 7


class TestConfigLoader:
    """Precedence: overrides > environment > file > defaults."""

    def test_defaults_without_file(self, tmp_path):
        config = ConfigLoader(project_path=tmp_path).load()

        assert config.checkpoint_dir == tmp_path
        assert config.checkpoint_backend == "filesystem"

    def test_file_values_applied(self, tmp_path):
        _write_config(
            tmp_path,
            {"vision_model": "gpt-file", "capture": {"viewport_width": 800}},
        )

        config = ConfigLoader(project_path=tmp_path).load()

        assert config.vision_model == "gpt-file"
        assert config.capture.viewport_width == 800
        assert config.capture.viewport_height == 900

    def test_environment_beats_file(self, tmp_path, monkeypatch):
        _write_config(tmp_path, {"vision_model": "gpt-file", "database": {"pool_size": 3}})
        monkeypatch.setenv("DESIGN_EXTRACTOR_VISION_MODEL", "gpt-env")
        monkeypatch.setenv("DESIGN_EXTRACTOR_DB_POOL_SIZE", "9")

        config = ConfigLoader(project_path=tmp_path).load()

        assert config.vision_model == "gpt-env"
        assert config.database.pool_size == 9

    def test_overrides_beat_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DESIGN_EXTRACTOR_BACKEND", "database")

        config = ConfigLoader(project_path=tmp_path).load(
            checkpoint_backend="filesystem", log_format=None
        )

        assert config.checkpoint_backend == "filesystem"
        assert config.log_format == "text"

    def test_invalid_value_raises_configuration_error(self, tmp_path):
        _write_config(tmp_path, {"capture": {"viewport_width": 0}})

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            ConfigLoader(project_path=tmp_path).load()

    def test_invalid_json(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("{not json")

        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            ConfigLoader(project_path=tmp_path).load()

    def test_non_object_file(self, tmp_path):
        _write_config(tmp_path, ["a", "b"])

        with pytest.raises(ConfigurationError, match="JSON object"):
            ConfigLoader(project_path=tmp_path).load()

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigLoader(config_file=tmp_path / "missing.json").load()


class TestLoadConfig:
    def test_directory_argument(self, tmp_path):
        _write_config(tmp_path, {"log_format": "json"})

        config = load_config(tmp_path)

        assert config.log_format == "json"
        assert config.checkpoint_dir == tmp_path

    def test_file_argument(self, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"vision_model": "gpt-custom"}))

        config = load_config(path)

        assert config.vision_model == "gpt-custom"
        assert config.checkpoint_dir == tmp_path

    def test_overrides_passed_through(self, tmp_path):
        config = load_config(tmp_path, checkpoint_backend="database")

        assert config.checkpoint_backend == "database"
