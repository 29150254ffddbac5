"""Configuration management with environment overrides and JSON schema validation."""

import copy
import json
import logging
import os
from typing import Any, Dict, List

from dotenv import load_dotenv

from .utils.exceptions import ConfigurationError, ValidationError
from .utils.validation import validate_config_structure

logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages application configuration with validation and environment support."""

    def __init__(self, config_dir: str = "config") -> None:
        """Initialize configuration manager."""
        self.config_dir = config_dir
        self._config_cache: Dict[str, Dict[str, Any]] = {}
        self._load_environment()

    def _load_environment(self) -> None:
        """Load environment variables from .env files."""
        env_file = os.path.join(os.getcwd(), ".env")
        if os.path.exists(env_file):
            load_dotenv(env_file)
            logger.debug("Loaded environment from .env file")

        env = os.getenv("ENVIRONMENT", "development")
        env_specific_file = os.path.join(self.config_dir, f"{env}.env")
        if os.path.exists(env_specific_file):
            load_dotenv(env_specific_file)
            logger.debug(f"Loaded environment from {env_specific_file}")

    def get_default_config(self) -> Dict[str, Any]:
        """Default matching and output settings."""
        return {
            "version": "1.0",
            "matching": {
                "type_sample_size": 50,
                "preview_rows": 50,
                "max_workers": 8,
            },
            "output": {
                "thumbnail_px": 80,
                "image_column_label": "Image",
                "sheet_title": "Matched Images",
                "base_filename": "Matched_Images",
            },
        }

    def load_config(self, config_name: str = "default_config") -> Dict[str, Any]:
        """Load configuration from file with caching.

        File values are merged over the defaults, then environment
        variables override both.
        """
        if config_name in self._config_cache:
            return self._config_cache[config_name]

        config_file = os.path.join(self.config_dir, f"{config_name}.json")
        if not os.path.exists(config_file):
            if config_name != "default_config":
                raise ConfigurationError(f"Configuration file not found: {config_file}")
            config = self._apply_environment_overrides(self.get_default_config())
            self.validate_runtime_config(config)
            self._config_cache[config_name] = config
            return config

        try:
            with open(config_file, "r", encoding="utf-8") as file:
                file_config = json.load(file)
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigurationError(f"Failed to load configuration '{config_name}': {e}")

        config = self.merge_configs(self.get_default_config(), file_config)
        config = self._apply_environment_overrides(config)
        self.validate_runtime_config(config)

        self._config_cache[config_name] = config
        logger.info(f"Loaded configuration: {config_name}")
        return config

    def _apply_environment_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration."""
        config = copy.deepcopy(config)
        matching = config.setdefault("matching", {})
        output = config.setdefault("output", {})

        matching["type_sample_size"] = self._get_env_int(
            "TYPE_SAMPLE_SIZE", matching.get("type_sample_size", 50)
        )
        matching["preview_rows"] = self._get_env_int(
            "PREVIEW_ROWS", matching.get("preview_rows", 50)
        )
        matching["max_workers"] = self._get_env_int(
            "INDEX_MAX_WORKERS", matching.get("max_workers", 8)
        )
        output["thumbnail_px"] = self._get_env_int(
            "THUMBNAIL_PX", output.get("thumbnail_px", 80)
        )
        output["image_column_label"] = self._get_env_str(
            "IMAGE_COLUMN_LABEL", output.get("image_column_label", "Image")
        )
        output["sheet_title"] = self._get_env_str(
            "OUTPUT_SHEET_TITLE", output.get("sheet_title", "Matched Images")
        )
        output["base_filename"] = self._get_env_str(
            "OUTPUT_BASE_FILENAME", output.get("base_filename", "Matched_Images")
        )
        return config

    def _get_env_bool(self, key: str, default: bool) -> bool:
        """Get boolean value from environment variable."""
        value = os.getenv(key, str(default)).lower()
        return value in ("true", "1", "yes", "on")

    def _get_env_int(self, key: str, default: int) -> int:
        """Get integer value from environment variable."""
        try:
            return int(os.getenv(key, str(default)))
        except (ValueError, TypeError):
            return default

    def _get_env_str(self, key: str, default: str) -> str:
        """Get string value from environment variable."""
        return os.getenv(key, default)

    def _get_env_list(
        self, key: str, default: List[str], separator: str = ","
    ) -> List[str]:
        """Get list value from environment variable."""
        value = os.getenv(key)
        if value:
            return [item.strip() for item in value.split(separator) if item.strip()]
        return default

    def get_app_config(self) -> Dict[str, Any]:
        """Get application-wide configuration settings."""
        config = self.load_config()
        return {
            "development_mode": self._get_env_bool("DEVELOPMENT_MODE", False),
            "log_level": self._get_env_str("LOG_LEVEL", "INFO"),
            "api_key": self._get_env_str("API_KEY", ""),
            "max_file_size_mb": self._get_env_int("MAX_FILE_SIZE_MB", 50),
            "allowed_table_extensions": self._get_env_list(
                "ALLOWED_TABLE_EXTENSIONS", ["xlsx", "xlsm", "xls", "csv", "tsv", "txt"]
            ),
            "allowed_archive_extensions": self._get_env_list(
                "ALLOWED_ARCHIVE_EXTENSIONS", ["zip"]
            ),
            "flask_config": {
                "host": self._get_env_str("FLASK_HOST", "0.0.0.0"),
                "port": self._get_env_int("FLASK_PORT", 5000),
                "debug": self._get_env_bool("FLASK_DEBUG", False),
            },
            "matching": dict(config["matching"]),
            "output": dict(config["output"]),
        }

    def merge_configs(
        self, base_config: Dict[str, Any], override_config: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Merge two configurations with override taking precedence."""
        merged = base_config.copy()
        for key, value in override_config.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = self.merge_configs(merged[key], value)
            else:
                merged[key] = value
        return merged

    def validate_runtime_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration at runtime with additional checks."""
        try:
            validate_config_structure(config)
        except ValidationError as e:
            raise ConfigurationError(f"Runtime configuration validation failed: {e}")

        title = config.get("output", {}).get("sheet_title", "")
        if any(char in title for char in "[]:*?/\\"):
            raise ConfigurationError(
                f"Sheet title '{title}' contains characters Excel does not allow"
            )
