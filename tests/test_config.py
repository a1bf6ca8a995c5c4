"""Tests for environment configuration and the listener settings store."""

# pylint: disable=redefined-outer-name

import os
from unittest.mock import patch

import pytest  # pylint: disable=import-error

from heartqueue.config import Settings, UserSettingsStore
from heartqueue.models import UserSettings


@pytest.fixture
def clean_env():
    """Environment without any HeartQueue variables"""
    with patch.dict(os.environ, {}, clear=True):
        yield


def test_settings_defaults(clean_env):
    """Test defaults when nothing is configured"""
    settings = Settings.from_env()
    assert settings.analysis_proxy_url == "http://localhost:8000"
    assert settings.cooldown_seconds == 15.0
    assert settings.max_retries == 3
    assert settings.poll_interval_seconds == 5.0
    assert settings.max_polls == 60
    assert settings.verify_webhook_signatures is False
    assert settings.cyanite_access_token is None


def test_settings_from_env(clean_env):
    """Test values are read from the environment"""
    env = {
        "CYANITE_ACCESS_TOKEN": "token",
        "VERIFY_WEBHOOK_SIGNATURES": "true",
        "RECOMMENDATION_COOLDOWN_SECONDS": "30",
        "ANALYSIS_MAX_POLLS": "0",
        "LOG_LEVEL": "debug",
    }
    with patch.dict(os.environ, env):
        settings = Settings.from_env()

    assert settings.cyanite_access_token == "token"
    assert settings.verify_webhook_signatures is True
    assert settings.cooldown_seconds == 30.0
    assert settings.max_polls is None
    assert settings.log_level == "DEBUG"


def test_settings_invalid_number(clean_env):
    """Test a malformed number fails loudly"""
    with patch.dict(os.environ, {"RECOMMENDATION_MAX_RETRIES": "three"}):
        with pytest.raises(ValueError, match="RECOMMENDATION_MAX_RETRIES"):
            Settings.from_env()


def test_store_missing_file_gives_defaults(tmp_path):
    """Test a missing settings file yields defaults"""
    store = UserSettingsStore(str(tmp_path / "settings.json"))
    assert store.load() == UserSettings()


def test_store_update_persists(tmp_path):
    """Test updates are validated, saved and readable by a new store"""
    path = tmp_path / "settings.json"
    store = UserSettingsStore(str(path))

    updated = store.update(max_heart_rate=200, threshold_genres=["drum and bass"])

    assert updated.max_heart_rate == 200
    assert path.exists()
    reloaded = UserSettingsStore(str(path)).load()
    assert reloaded.threshold_genres == ["drum and bass"]
    assert reloaded.auto_recommend is True


def test_store_rejects_invalid_update(tmp_path):
    """Test an invalid max heart rate is rejected"""
    store = UserSettingsStore(str(tmp_path / "settings.json"))
    with pytest.raises(ValueError):
        store.update(max_heart_rate=0)


def test_store_corrupt_file_gives_defaults(tmp_path):
    """Test an unreadable settings file falls back to defaults"""
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert UserSettingsStore(str(path)).load() == UserSettings()


def test_store_reset(tmp_path):
    """Test reset restores defaults"""
    store = UserSettingsStore(str(tmp_path / "settings.json"))
    store.update(auto_recommend=False)
    assert store.reset() == UserSettings()
    assert store.load().auto_recommend is True
