"""
Configuration for the Roam auth session layer.

Settings come from defaults, an optional YAML/JSON config file and environment
variables (highest priority), with a ``.env`` file read through python-dotenv.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, BaseSettings, Field, validator
import yaml

logger = logging.getLogger(__name__)


class SessionKeys(BaseModel):
    """Key names used in the persisted session cache"""
    customer: str = "roam_customer"
    provider: str = "roam_provider"
    access_token: str = "roam_access_token"
    user_type: str = "roam_user_type"
    gateway_session: str = "roam_gateway_session"


class Settings(BaseSettings):
    """Auth layer settings."""

    # Backend-as-a-service
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_ANON_KEY: str = ""
    OAUTH_REDIRECT_URL: Optional[str] = None

    # Outbound application API
    API_BASE_URL: str = "http://localhost:3000/api"
    REQUEST_TIMEOUT: float = 10.0

    # Persisted session cache
    CACHE_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "roam:"
    SESSION_KEYS: SessionKeys = Field(default_factory=SessionKeys)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    LOG_FILE: Optional[str] = None

    @validator("CACHE_BACKEND")
    def validate_cache_backend(cls, v):
        """Validate cache backend name"""
        valid_backends = ["memory", "redis"]
        if v.lower() not in valid_backends:
            raise ValueError(f"Invalid cache backend: {v}. Must be one of {valid_backends}")
        return v.lower()

    @validator("LOG_LEVEL")
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @validator("SUPABASE_URL", "API_BASE_URL")
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    class Config:
        """Pydantic settings config."""
        env_file = ".env"
        case_sensitive = True


class ConfigLoader:
    """
    Configuration loader for the auth layer.

    Loads configuration from:
    1. Default values
    2. Config file
    3. Environment variables (highest priority)
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
        """
        self.config_path = config_path or os.environ.get("ROAM_AUTH_CONFIG")
        self._settings: Optional[Settings] = None

    def load(self) -> Settings:
        """
        Load configuration from all sources.

        Returns:
            Loaded settings
        """
        if self._settings is not None:
            return self._settings

        file_config: Dict[str, Any] = {}
        if self.config_path:
            file_config = self._load_from_file(self.config_path)

        # File values act as defaults; BaseSettings still lets the environment win
        overrides = {key: value for key, value in file_config.items() if key not in os.environ}
        self._settings = Settings(**overrides)
        return self._settings

    def _load_from_file(self, path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            path: Path to config file

        Returns:
            Loaded configuration dictionary
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        try:
            if path.suffix.lower() in ['.yaml', '.yml']:
                with open(path, 'r') as f:
                    return yaml.safe_load(f) or {}
            elif path.suffix.lower() == '.json':
                with open(path, 'r') as f:
                    return json.load(f)
            else:
                logger.warning(f"Unsupported config file format: {path.suffix}")
                return {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Error loading config file {path}: {e}")
            return {}


def get_settings(config_path: Optional[str] = None) -> Settings:
    """Load settings from file and environment."""
    return ConfigLoader(config_path).load()
