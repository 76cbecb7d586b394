"""Simple YAML configuration loader for DictaFlow."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from .settings import (
    DictationSettings,
    ChunkingSettings,
    StreamingSettings,
    CompletionSettings,
    TranscriptionSettings,
    AudioSettings,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "dictaflow.yaml"


class DictaFlowConfig:
    """DictaFlow configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, looks for dictaflow.yaml
                        in the current directory and its parents.
        """
        self.config_file = Path(config_path) if config_path else self._find_config_file()

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    @staticmethod
    def _find_config_file() -> Path:
        """Walk up from the working directory looking for dictaflow.yaml."""
        current = Path.cwd()
        for directory in [current, *current.parents]:
            candidate = directory / DEFAULT_CONFIG_NAME
            if candidate.exists():
                return candidate
        return current / DEFAULT_CONFIG_NAME

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        google = config.get('google_cloud') or {}
        creds_path = google.get('credentials_path')
        if creds_path and not os.path.isabs(creds_path):
            google['credentials_path'] = str(config_dir / creds_path)

        log_config = config.get('logging') or {}
        log_path = log_config.get('file_path')
        if log_path and not os.path.isabs(log_path):
            log_config['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'vad.threshold').

        Args:
            key_path: Dot-separated key path (e.g., 'google_cloud.credentials_path')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'provider.active')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict or not isinstance(config_dict[key], dict):
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_google_credentials_path(self) -> Optional[str]:
        """Get Google credentials path, or None when the file is not configured or missing."""
        creds_path = self.get('google_cloud.credentials_path')
        if not creds_path:
            return None

        creds_file = Path(creds_path)
        if not creds_file.exists():
            logger.warning(f"Google credentials file not found: {creds_path}")
            return None

        return str(creds_file.absolute())

    def settings(self) -> DictationSettings:
        """Build the read-only settings snapshot used by the engine."""
        return DictationSettings.from_config(self)


__all__ = [
    "DictaFlowConfig",
    "DictationSettings",
    "ChunkingSettings",
    "StreamingSettings",
    "CompletionSettings",
    "TranscriptionSettings",
    "AudioSettings",
]
