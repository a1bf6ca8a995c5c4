"""
Service configuration from the environment and the listener settings store.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from heartqueue.models import UserSettings

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


class Settings(BaseModel):
    """Runtime configuration for the proxy and the recommendation pipeline"""

    spotify_api_base: str = "https://api.spotify.com/v1"
    spotify_access_token: Optional[str] = None
    analysis_proxy_url: str = "http://localhost:8000"
    cyanite_access_token: Optional[str] = None
    cyanite_api_url: str = "https://api.cyanite.ai/graphql"
    cyanite_webhook_secret: Optional[str] = None
    verify_webhook_signatures: bool = False
    settings_path: str = "heartqueue_settings.json"
    log_level: str = "INFO"

    cooldown_seconds: float = 15.0
    max_retries: int = 3
    poll_interval_seconds: float = 5.0
    max_polls: Optional[int] = 60
    playback_poll_interval_seconds: float = 3.0
    analysis_cache_size: int = 1000
    analysis_cache_ttl_seconds: float = 86400.0
    event_log_capacity: int = 50

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (call load_dotenv() first)"""
        max_polls = _env_int("ANALYSIS_MAX_POLLS", 60)
        return cls(
            spotify_api_base=os.getenv("SPOTIFY_API_BASE", "https://api.spotify.com/v1"),
            spotify_access_token=os.getenv("SPOTIFY_ACCESS_TOKEN"),
            analysis_proxy_url=os.getenv("ANALYSIS_PROXY_URL", "http://localhost:8000"),
            cyanite_access_token=os.getenv("CYANITE_ACCESS_TOKEN"),
            cyanite_api_url=os.getenv("CYANITE_API_URL", "https://api.cyanite.ai/graphql"),
            cyanite_webhook_secret=os.getenv("CYANITE_WEBHOOK_SECRET"),
            verify_webhook_signatures=_env_bool("VERIFY_WEBHOOK_SIGNATURES"),
            settings_path=os.getenv("HEARTQUEUE_SETTINGS_PATH", "heartqueue_settings.json"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cooldown_seconds=_env_float("RECOMMENDATION_COOLDOWN_SECONDS", 15.0),
            max_retries=_env_int("RECOMMENDATION_MAX_RETRIES", 3),
            poll_interval_seconds=_env_float("ANALYSIS_POLL_INTERVAL_SECONDS", 5.0),
            max_polls=max_polls if max_polls > 0 else None,
            playback_poll_interval_seconds=_env_float("PLAYBACK_POLL_INTERVAL_SECONDS", 3.0),
            analysis_cache_size=_env_int("ANALYSIS_CACHE_SIZE", 1000),
            analysis_cache_ttl_seconds=_env_float("ANALYSIS_CACHE_TTL_SECONDS", 86400.0),
            event_log_capacity=_env_int("EVENT_LOG_CAPACITY", 50),
        )


class UserSettingsStore:
    """
    Read/write store for listener settings backed by a JSON file.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._settings: Optional[UserSettings] = None

    def load(self) -> UserSettings:
        """Load settings, falling back to defaults when the file is missing or unreadable"""
        if self._settings is not None:
            return self._settings

        if not self.path.exists():
            self._settings = UserSettings()
            return self._settings

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                self._settings = UserSettings.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to read settings from %s: %s", self.path, str(e))
            self._settings = UserSettings()
        return self._settings

    def save(self, settings: UserSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(settings.model_dump_json(indent=2))
        os.replace(tmp_path, self.path)
        self._settings = settings
        logger.debug("Saved settings to %s", self.path)

    def update(self, **changes) -> UserSettings:
        """Apply changes, validate, persist and return the new settings"""
        current = self.load()
        updated = UserSettings.model_validate({**current.model_dump(), **changes})
        self.save(updated)
        return updated

    def reset(self) -> UserSettings:
        defaults = UserSettings()
        self.save(defaults)
        return defaults
