"""
Configuration management for Pirido.

Loads settings from config.ini with environment variable overrides.
Covers the storage backend and the AI endpoint; user-facing settings
(API key, model) live in the application state instead.
"""

import configparser
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pirido.logging_config import get_logger

logger = get_logger(__name__)

CONFIG_DIR = Path.home() / ".pirido"
DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{CONFIG_DIR / 'pirido.db'}"
DEFAULT_STORAGE_KEY = "pirido.app.v1"
DEFAULT_SAVE_DEBOUNCE_MS = 200
DEFAULT_AI_ENDPOINT = "https://api.openai.com/v1"
DEFAULT_AI_TIMEOUT = 60
DEFAULT_MAX_OUTPUT_TOKENS = 800


class Config:
    """Application configuration manager."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config file, defaults to ~/.pirido/config.ini
        """
        self.config_path = config_path or self._default_config_path()
        self._config = configparser.ConfigParser()
        self._load()

    def _default_config_path(self) -> Path:
        """Get default config path."""
        return CONFIG_DIR / "config.ini"

    def _load(self):
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                self._config.read(self.config_path)
                logger.info(f"Loaded configuration from {self.config_path}")
            except configparser.Error as e:
                logger.warning(f"Failed to read config file: {e}. Using defaults.")
        else:
            logger.debug(f"Config file not found at {self.config_path}. Using defaults.")

    def get_storage_config(self) -> Dict[str, Any]:
        """
        Get storage configuration with environment overrides.

        Environment variables take precedence over config file:
        - PIRIDO_DATABASE_URL
        - PIRIDO_STORAGE_KEY
        - PIRIDO_SAVE_DEBOUNCE_MS

        Returns:
            Dictionary with storage configuration
        """
        config = {
            'database_url': os.getenv('PIRIDO_DATABASE_URL') or
                            self._config.get('storage', 'database_url', fallback=DEFAULT_DATABASE_URL),
            'storage_key': os.getenv('PIRIDO_STORAGE_KEY') or
                           self._config.get('storage', 'storage_key', fallback=DEFAULT_STORAGE_KEY),
            'save_debounce_ms': int(os.getenv('PIRIDO_SAVE_DEBOUNCE_MS') or
                                    self._config.get('storage', 'save_debounce_ms',
                                                     fallback=str(DEFAULT_SAVE_DEBOUNCE_MS))),
        }

        logger.debug(f"Storage config: database_url={config['database_url']}, "
                     f"storage_key={config['storage_key']}, "
                     f"save_debounce_ms={config['save_debounce_ms']}")

        return config

    def get_ai_config(self) -> Dict[str, Any]:
        """
        Get AI endpoint configuration with environment overrides.

        Environment variables take precedence over config file:
        - PIRIDO_AI_ENDPOINT
        - PIRIDO_AI_TIMEOUT
        - PIRIDO_AI_MAX_OUTPUT_TOKENS

        Returns:
            Dictionary with AI endpoint configuration
        """
        config = {
            'endpoint': os.getenv('PIRIDO_AI_ENDPOINT') or
                        self._config.get('ai', 'endpoint', fallback=DEFAULT_AI_ENDPOINT),
            'timeout': float(os.getenv('PIRIDO_AI_TIMEOUT') or
                             self._config.get('ai', 'timeout', fallback=str(DEFAULT_AI_TIMEOUT))),
            'max_output_tokens': int(os.getenv('PIRIDO_AI_MAX_OUTPUT_TOKENS') or
                                     self._config.get('ai', 'max_output_tokens',
                                                      fallback=str(DEFAULT_MAX_OUTPUT_TOKENS))),
        }

        logger.debug(f"AI config: endpoint={config['endpoint']}, timeout={config['timeout']}, "
                     f"max_output_tokens={config['max_output_tokens']}")

        return config
