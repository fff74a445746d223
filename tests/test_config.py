"""
Configuration Tests

Run with: pytest tests/test_config.py -v
"""

import pytest

from opinion_topics.config import (
    DEFAULT_MAX_COUNT,
    DEFAULT_MAX_SIZE_UNITS,
    AnalysisSettings,
    load_settings,
)

ENV_KEYS = [
    "DATABASE_URL",
    "AI_INCREMENTAL_MAX_TOKENS",
    "AI_INCREMENTAL_MAX_OPINIONS",
    "COMPLETION_MODEL",
    "COMPLETION_TIMEOUT_SECONDS",
    "LOW_CONFIDENCE_THRESHOLD",
    "MIRROR_URL",
    "MIRROR_AUTH_TOKEN",
    "MIRROR_DISABLE_SYNC",
    "MIRROR_HISTORY_LIMIT",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestLoadSettings:
    """Tests for building settings from the environment."""

    def test_defaults(self, clean_env):
        settings = load_settings()

        assert settings.max_size_units == DEFAULT_MAX_SIZE_UNITS
        assert settings.max_count == DEFAULT_MAX_COUNT
        assert settings.low_confidence_threshold == 0.5
        assert settings.mirror_url is None
        assert settings.mirror_disable_sync is False

    def test_overrides(self, clean_env):
        clean_env.setenv("AI_INCREMENTAL_MAX_TOKENS", "8000")
        clean_env.setenv("AI_INCREMENTAL_MAX_OPINIONS", "20")
        clean_env.setenv("COMPLETION_MODEL", "gpt-4o")
        clean_env.setenv("MIRROR_URL", "https://mirror.example.com")
        clean_env.setenv("MIRROR_DISABLE_SYNC", "yes")

        settings = load_settings()

        assert settings.max_size_units == 8000
        assert settings.max_count == 20
        assert settings.completion_model == "gpt-4o"
        assert settings.mirror_url == "https://mirror.example.com"
        assert settings.mirror_disable_sync is True

    def test_invalid_number_uses_default(self, clean_env):
        clean_env.setenv("AI_INCREMENTAL_MAX_OPINIONS", "lots")
        clean_env.setenv("COMPLETION_TIMEOUT_SECONDS", "soon")

        settings = load_settings()

        assert settings.max_count == DEFAULT_MAX_COUNT
        assert settings.completion_timeout_seconds == 45.0

    def test_values_are_clamped(self, clean_env):
        clean_env.setenv("AI_INCREMENTAL_MAX_OPINIONS", "0")
        clean_env.setenv("AI_INCREMENTAL_MAX_TOKENS", "10000000")
        clean_env.setenv("MIRROR_HISTORY_LIMIT", "500")

        settings = load_settings()

        assert settings.max_count == 1
        assert settings.max_size_units == 100000
        assert settings.mirror_history_limit == 100


class TestAnalysisSettings:
    """Tests for the settings model."""

    def test_rejects_zero_budget(self):
        with pytest.raises(ValueError):
            AnalysisSettings(max_count=0)
