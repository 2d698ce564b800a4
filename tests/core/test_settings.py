"""Tests for camp_spine.core.settings."""

import pytest
from pydantic import ValidationError

from camp_spine.core.settings import CampSpineSettings, get_settings


class TestSettings:
    def test_defaults(self):
        settings = CampSpineSettings()
        assert settings.low_availability_threshold == 5
        assert settings.report_window_hours == 24
        assert settings.feature_flags.availability_alerts is True
        assert settings.dispatcher == "console"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CAMP_SPINE_LOW_AVAILABILITY_THRESHOLD", "3")
        monkeypatch.setenv("CAMP_SPINE_ADMIN_EMAILS", '[" Ops@Example.com ", ""]')
        monkeypatch.setenv("CAMP_SPINE_FEATURE_FLAGS__DAILY_REPORT", "false")
        settings = CampSpineSettings()
        assert settings.low_availability_threshold == 3
        assert settings.admin_emails == ["ops@example.com"]
        assert settings.feature_flags.daily_report is False

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValidationError):
            CampSpineSettings(low_availability_threshold=0)

    def test_webhook_requires_url(self):
        with pytest.raises(ValidationError):
            CampSpineSettings(dispatcher="webhook")
        assert CampSpineSettings(dispatcher="webhook", webhook_url="https://hooks.example.com").webhook_url

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
        assert get_settings(_force_reload=True) is get_settings()
