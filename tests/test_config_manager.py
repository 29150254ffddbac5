"""Tests for configuration manager module."""

import json
import os
import tempfile

import pytest

from image_mapper.config_manager import ConfigManager
from image_mapper.utils.exceptions import ConfigurationError

ENV_KEYS = [
    "TYPE_SAMPLE_SIZE",
    "PREVIEW_ROWS",
    "INDEX_MAX_WORKERS",
    "THUMBNAIL_PX",
    "IMAGE_COLUMN_LABEL",
    "OUTPUT_SHEET_TITLE",
    "OUTPUT_BASE_FILENAME",
    "API_KEY",
    "ALLOWED_TABLE_EXTENSIONS",
    "MAX_FILE_SIZE_MB",
    "DEVELOPMENT_MODE",
]


class TestConfigManager:
    """Test cases for ConfigManager class."""

    @pytest.fixture(autouse=True)
    def clean_environment(self, monkeypatch):
        for key in ENV_KEYS:
            monkeypatch.delenv(key, raising=False)

    @pytest.fixture
    def temp_config_dir(self):
        """Create temporary config directory for testing."""
        with tempfile.TemporaryDirectory() as temp_dir:
            yield temp_dir

    def write_config(self, config_dir, name, content):
        path = os.path.join(config_dir, f"{name}.json")
        with open(path, "w", encoding="utf-8") as f:
            if isinstance(content, str):
                f.write(content)
            else:
                json.dump(content, f)
        return path

    def test_init(self, temp_config_dir):
        manager = ConfigManager(temp_config_dir)
        assert manager.config_dir == temp_config_dir
        assert manager._config_cache == {}

    def test_load_config_default(self, temp_config_dir):
        """Defaults are used when no config file exists."""
        config = ConfigManager(temp_config_dir).load_config()

        assert config["matching"] == {
            "type_sample_size": 50,
            "preview_rows": 50,
            "max_workers": 8,
        }
        assert config["output"]["thumbnail_px"] == 80
        assert config["output"]["sheet_title"] == "Matched Images"
        assert config["output"]["base_filename"] == "Matched_Images"

    def test_file_values_merge_over_defaults(self, temp_config_dir):
        self.write_config(
            temp_config_dir, "default_config", {"output": {"thumbnail_px": 120}}
        )
        config = ConfigManager(temp_config_dir).load_config()

        assert config["output"]["thumbnail_px"] == 120
        assert config["output"]["image_column_label"] == "Image"
        assert config["matching"]["type_sample_size"] == 50

    def test_environment_overrides(self, temp_config_dir, monkeypatch):
        self.write_config(
            temp_config_dir, "default_config", {"output": {"thumbnail_px": 120}}
        )
        monkeypatch.setenv("THUMBNAIL_PX", "64")
        monkeypatch.setenv("TYPE_SAMPLE_SIZE", "10")
        monkeypatch.setenv("IMAGE_COLUMN_LABEL", "Photo")

        config = ConfigManager(temp_config_dir).load_config()
        assert config["output"]["thumbnail_px"] == 64
        assert config["matching"]["type_sample_size"] == 10
        assert config["output"]["image_column_label"] == "Photo"

    def test_invalid_integer_env_falls_back(self, temp_config_dir, monkeypatch):
        monkeypatch.setenv("PREVIEW_ROWS", "lots")
        config = ConfigManager(temp_config_dir).load_config()
        assert config["matching"]["preview_rows"] == 50

    def test_overrides_do_not_mutate_defaults(self, temp_config_dir, monkeypatch):
        manager = ConfigManager(temp_config_dir)
        monkeypatch.setenv("THUMBNAIL_PX", "64")
        manager.load_config()
        assert manager.get_default_config()["output"]["thumbnail_px"] == 80

    @pytest.mark.parametrize(
        "content",
        [
            {"matching": {"type_sample_size": 0}},
            {"matching": {"unknown_setting": 1}},
            {"output": {"thumbnail_px": "big"}},
            {"output": {"sheet_title": "a/b"}},
            {"output": {"sheet_title": "x" * 40}},
        ],
    )
    def test_invalid_config_raises(self, temp_config_dir, content):
        self.write_config(temp_config_dir, "default_config", content)
        with pytest.raises(ConfigurationError):
            ConfigManager(temp_config_dir).load_config()

    def test_malformed_json_raises(self, temp_config_dir):
        self.write_config(temp_config_dir, "default_config", "{not json")
        with pytest.raises(ConfigurationError):
            ConfigManager(temp_config_dir).load_config()

    def test_missing_named_config_raises(self, temp_config_dir):
        with pytest.raises(ConfigurationError):
            ConfigManager(temp_config_dir).load_config("nonexistent")

    def test_caching(self, temp_config_dir):
        manager = ConfigManager(temp_config_dir)
        first = manager.load_config()
        assert manager.load_config() is first
        assert list(manager._config_cache) == ["default_config"]

    def test_load_named_config(self, temp_config_dir):
        self.write_config(
            temp_config_dir, "products", {"output": {"sheet_title": "Products"}}
        )
        loaded = ConfigManager(temp_config_dir).load_config("products")
        assert loaded["output"]["sheet_title"] == "Products"
        assert loaded["output"]["thumbnail_px"] == 80

    def test_merge_configs(self, temp_config_dir):
        manager = ConfigManager(temp_config_dir)
        base = {"a": 1, "nested": {"x": 1, "y": 2}}
        override = {"b": 2, "nested": {"y": 3}}

        merged = manager.merge_configs(base, override)
        assert merged == {"a": 1, "b": 2, "nested": {"x": 1, "y": 3}}

    def test_get_app_config(self, temp_config_dir, monkeypatch):
        monkeypatch.setenv("API_KEY", "secret")
        monkeypatch.setenv("ALLOWED_TABLE_EXTENSIONS", "xlsx, csv")
        monkeypatch.setenv("DEVELOPMENT_MODE", "yes")

        app_config = ConfigManager(temp_config_dir).get_app_config()
        assert app_config["api_key"] == "secret"
        assert app_config["allowed_table_extensions"] == ["xlsx", "csv"]
        assert app_config["allowed_archive_extensions"] == ["zip"]
        assert app_config["development_mode"] is True
        assert app_config["max_file_size_mb"] == 50
        assert app_config["matching"]["preview_rows"] == 50
