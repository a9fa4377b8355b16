"""
Configuration management for the sync tool
"""

import copy
import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_ROOM_ID = "dastan_internal_shared_v2_9912"

DEFAULTS: Dict[str, Any] = {
    "global": {
        "sync_interval": 60,
        "request_timeout": 15,
        "generation_timeout": 180,
        "extraction_timeout": 300,
        "timezone": "Etc/UTC",
        "data_dir": "data",
    },
    "public_store": {
        "base_url": "http://localhost:8080",
        "default_room": DEFAULT_ROOM_ID,
    },
    "gemini": {
        "api_url": "https://generativelanguage.googleapis.com/v1beta",
        "text_model": "gemini-2.5-flash",
        "tts_model": "gemini-2.5-flash-preview-tts",
    },
    "library": {
        "default_author": "Urdu Scholar",
        "default_title": "Untitled Dastan",
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration class that loads settings from config/config.yaml (YAML) and secrets.env"""

    def __init__(
        self,
        config_path: Optional[str] = "config/config.yaml",
        secrets_path: str = "secrets.env",
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.config_path = config_path
        self.secrets_path = secrets_path
        self._load_config()
        self._validate_config()

    def _load_config(self) -> None:
        raw: Dict[str, Any] = {}
        if self.config_path:
            if not os.path.exists(self.config_path):
                raise FileNotFoundError(f"Config file not found: {self.config_path}")
            with open(self.config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            self.logger.info(f"Loaded configuration from {self.config_path}")
        else:
            self.logger.debug("No config file given, using built-in defaults")

        if not isinstance(raw, dict):
            raise ValueError(f"Config file must contain a mapping: {self.config_path}")

        data = _merge(DEFAULTS, raw)
        self.global_config: Dict[str, Any] = data["global"]
        self.public_store: Dict[str, Any] = data["public_store"]
        self.gemini: Dict[str, Any] = data["gemini"]
        self.library: Dict[str, Any] = data["library"]

        # Secrets live outside the YAML file
        if self.secrets_path and os.path.exists(self.secrets_path):
            load_dotenv(self.secrets_path)
            self.logger.info(f"Loaded secrets from {self.secrets_path}")

        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")

    def _validate_config(self) -> None:
        errors = []

        for key in ["sync_interval", "request_timeout", "generation_timeout", "extraction_timeout"]:
            value = self.global_config.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                errors.append(f"global.{key} must be a positive number (got {value!r})")

        if not self.global_config.get("data_dir"):
            errors.append("global.data_dir is required")

        if not self.public_store.get("base_url"):
            errors.append("public_store.base_url is required")
        if not self.public_store.get("default_room"):
            errors.append("public_store.default_room is required")

        for key in ["api_url", "text_model", "tts_model"]:
            if not self.gemini.get(key):
                errors.append(f"gemini.{key} is required")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(
                f"- {error}" for error in errors
            )
            self.logger.error(error_msg)
            raise ValueError(error_msg)

        self.logger.info("Configuration validation passed")

    def get_global(self) -> dict:
        return self.global_config

    @property
    def sync_interval(self) -> float:
        return float(self.global_config["sync_interval"])

    @property
    def request_timeout(self) -> float:
        return float(self.global_config["request_timeout"])

    @property
    def generation_timeout(self) -> float:
        return float(self.global_config["generation_timeout"])

    @property
    def extraction_timeout(self) -> float:
        return float(self.global_config["extraction_timeout"])

    @property
    def timezone(self) -> str:
        return self.global_config.get("timezone", "Etc/UTC")

    @property
    def data_dir(self) -> str:
        return self.global_config["data_dir"]

    @property
    def default_room(self) -> str:
        return self.public_store["default_room"]

    def get_public_store_config(self) -> dict:
        return {"base_url": self.public_store["base_url"], "timeout": self.request_timeout}

    def get_gemini_config(self) -> dict:
        return {
            "api_key": self.GEMINI_API_KEY,
            "api_url": self.gemini["api_url"],
            "text_model": self.gemini["text_model"],
            "tts_model": self.gemini["tts_model"],
        }

    def __str__(self) -> str:
        """String representation of config (without sensitive data)"""
        return f"""Configuration:
  Config file: {self.config_path or '[defaults]'}
  Public store: {self.public_store['base_url']} (default room: {self.default_room})
  Sync interval: {self.sync_interval:g} seconds
  Request timeout: {self.request_timeout:g} seconds
  Generation timeout: {self.generation_timeout:g} seconds
  Timezone: {self.timezone}
  Data directory: {self.data_dir}
  Gemini API key: {'[SET]' if self.GEMINI_API_KEY else '[NOT SET]'}
  TTS model: {self.gemini['tts_model']}"""
