"""Runtime settings for the storage subsystem: file locations, test mode, logging."""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@dataclass
class StorageSettings:
    """Settings data structure."""
    config_path: str = os.path.join(BASE_DIR, 'config', 'storage.yaml')
    registry_path: str = os.path.join(BASE_DIR, 'config', 'storage-registry.json')
    test_mode: bool = False
    test_root: str = os.path.join(tempfile.gettempdir(), 'media-storage-test')
    log_level: str = "INFO"
    removable_only: bool = True
    command_timeout: int = 30

    @property
    def effective_config_path(self) -> Path:
        """Config file location; redirected under ``test_root`` in test mode."""
        if self.test_mode:
            return Path(self.test_root) / Path(self.config_path).name
        return Path(self.config_path)

    @property
    def effective_registry_path(self) -> Path:
        if self.test_mode:
            return Path(self.test_root) / Path(self.registry_path).name
        return Path(self.registry_path)

    @property
    def device_fixture_path(self) -> Path:
        """Devices reported in test mode instead of probing hardware."""
        return Path(self.test_root) / 'devices.json'


class SettingsManager:
    """Layers defaults, an optional JSON settings file and environment variables."""

    ENV_MAPPINGS = {
        'MEDIA_STORAGE_CONFIG_PATH': 'config_path',
        'MEDIA_STORAGE_REGISTRY_PATH': 'registry_path',
        'MEDIA_STORAGE_TEST_MODE': 'test_mode',
        'MEDIA_STORAGE_TEST_ROOT': 'test_root',
        'MEDIA_STORAGE_LOG_LEVEL': 'log_level',
        'MEDIA_STORAGE_REMOVABLE_ONLY': 'removable_only',
        'MEDIA_STORAGE_COMMAND_TIMEOUT': 'command_timeout',
    }

    BOOLEAN_KEYS = {'MEDIA_STORAGE_TEST_MODE', 'MEDIA_STORAGE_REMOVABLE_ONLY'}

    def __init__(self, settings_file_path: Optional[str] = None):
        """
        Initialize the SettingsManager.

        Args:
            settings_file_path: Optional path to a JSON settings file
        """
        self.settings_file_path = settings_file_path

    def load_settings(self) -> StorageSettings:
        """
        Load settings from defaults, settings file and environment, in that order.

        Returns:
            StorageSettings object

        Raises:
            ValueError: If a value is invalid
        """
        values = asdict(StorageSettings())

        if self.settings_file_path and os.path.exists(self.settings_file_path):
            values.update(self._load_settings_file(self.settings_file_path))

        values.update(self._load_from_environment())

        settings = StorageSettings(**values)
        self._validate_settings(settings)
        if settings.test_mode:
            logger.info(f"Test mode enabled; files and devices redirected to {settings.test_root}",
                        extra={'event': 'settings.test_mode', 'path': settings.test_root})

        return settings

    def _load_settings_file(self, file_path: str) -> Dict[str, Any]:
        """Known keys from a JSON settings file; unreadable files are ignored."""
        try:
            with open(file_path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading settings file {file_path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Settings file {file_path} must contain a JSON object")
            return {}

        known = {f.name for f in fields(StorageSettings)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown settings: {', '.join(sorted(unknown))}")
        return {k: v for k, v in data.items() if k in known}

    def _load_from_environment(self) -> Dict[str, Any]:
        values = {}
        for env_key, settings_key in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_key)
            if env_value is not None:
                values[settings_key] = self._parse_env_value(env_key, env_value)
        return values

    def _parse_env_value(self, env_key: str, value: str) -> Any:
        """
        Parse environment variable value to appropriate type.

        Args:
            env_key: Environment variable key
            value: String value from environment

        Returns:
            Parsed value in appropriate type
        """
        if env_key in self.BOOLEAN_KEYS:
            return value.strip().lower() in {'true', '1', 'yes', 'on'}

        if env_key == 'MEDIA_STORAGE_COMMAND_TIMEOUT':
            try:
                return int(value)
            except ValueError:
                logger.warning(f"Invalid integer for {env_key}, using default")
                return StorageSettings.command_timeout

        return value

    def _validate_settings(self, settings: StorageSettings) -> None:
        """
        Raises:
            ValueError: If settings are invalid
        """
        if not isinstance(settings.command_timeout, int) or settings.command_timeout <= 0:
            raise ValueError("command_timeout must be a positive integer")

        valid_log_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if str(settings.log_level).upper() not in valid_log_levels:
            raise ValueError(f"Invalid log level: {settings.log_level}")

        if not settings.config_path:
            raise ValueError("config_path must not be empty")

        logger.debug("Settings validation passed")
