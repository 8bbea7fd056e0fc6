"""
Persisted operator settings (LLM endpoint and automation intervals).
Stored as a small YAML document next to the process.
"""
import os
import logging
import threading
from dataclasses import dataclass, asdict
from typing import Any, Dict

import yaml

logger = logging.getLogger("Settings")

DEFAULT_SETTINGS_FILE = "settings.yaml"

ANALYSIS_INTERVAL_RANGE = (30, 3600)
DOWNLOAD_INTERVAL_RANGE = (60, 7200)


class SettingsValidationError(ValueError):
    """Raised when a settings update is rejected; nothing is applied."""


@dataclass
class Settings:
    llm_base_url: str = "http://127.0.0.1:1234"
    ai_analysis_interval: int = 180  # seconds
    log_download_interval: int = 600  # seconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate_settings(data: Dict[str, Any]) -> Settings:
    """Build a Settings from raw input or raise SettingsValidationError."""
    url = str(data.get('llm_base_url', '') or '').strip()
    if not url:
        raise SettingsValidationError("Please enter a valid LLM server URL")

    try:
        analysis = int(data.get('ai_analysis_interval'))
        download = int(data.get('log_download_interval'))
    except (TypeError, ValueError):
        raise SettingsValidationError("Intervals must be whole numbers of seconds") from None

    low, high = ANALYSIS_INTERVAL_RANGE
    if not low <= analysis <= high:
        raise SettingsValidationError(f"AI analysis interval must be between {low} and {high} seconds")
    low, high = DOWNLOAD_INTERVAL_RANGE
    if not low <= download <= high:
        raise SettingsValidationError(f"Log download interval must be between {low} and {high} seconds")

    return Settings(llm_base_url=url.rstrip('/'), ai_analysis_interval=analysis,
                    log_download_interval=download)


class SettingsStore:
    """Loads, validates and saves Settings to a YAML file."""

    def __init__(self, path: str = None):
        self._path = path or os.environ.get("SETTINGS_FILE", DEFAULT_SETTINGS_FILE)
        self._lock = threading.Lock()
        self._settings = self._load()

    @property
    def path(self) -> str:
        return self._path

    @property
    def settings(self) -> Settings:
        return self._settings

    def _load(self) -> Settings:
        if not os.path.exists(self._path):
            return Settings()
        try:
            with open(self._path, 'r') as f:
                data = yaml.safe_load(f) or {}
            merged = {**Settings().to_dict(), **data}
            settings = validate_settings(merged)
            logger.info(f"Loaded settings from {self._path}")
            return settings
        except (yaml.YAMLError, SettingsValidationError) as e:
            logger.warning(f"Ignoring invalid settings file {self._path}: {e}")
            return Settings()

    def _save(self) -> None:
        with open(self._path, 'w') as f:
            yaml.dump(self._settings.to_dict(), f, default_flow_style=False)

    def update(self, data: Dict[str, Any]) -> Settings:
        """Validate and apply a full or partial update. Invalid input changes nothing."""
        with self._lock:
            merged = {**self._settings.to_dict(), **data}
            settings = validate_settings(merged)
            self._settings = settings
            self._save()
        logger.info(f"Settings updated: {settings.to_dict()}")
        return settings

    def reset(self) -> Settings:
        with self._lock:
            self._settings = Settings()
            self._save()
        logger.info("Settings reset to defaults")
        return self._settings
