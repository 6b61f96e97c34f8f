"""Tests for config/settings.py and insights/runtime.py wiring."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from config.settings import Settings
from insights.providers import OllamaProvider
from insights.runtime import LoopRunner, build_orchestrator, build_preference_store


class TestSettings:
    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        settings = Settings()
        assert settings.provider == "anthropic"
        assert settings.cache_ttl_seconds == 300.0
        assert settings.max_attempts == 3
        assert settings.retry_base_delay == 0.5
        assert settings.query_deadline == 60.0
        assert settings.preferences_db_path == Path("data/preferences.db")

    @patch.dict(os.environ, {"CACHE_TTL_SECONDS": "30", "MAX_ATTEMPTS": "5", "QUERY_DEADLINE": "0"}, clear=True)
    def test_env_overrides(self):
        settings = Settings()
        assert settings.cache_ttl_seconds == 30.0
        assert settings.max_attempts == 5
        assert settings.query_deadline is None

    @patch.dict(os.environ, {"INSIGHTS_PROVIDER": "anthropic"}, clear=True)
    def test_missing_api_key(self):
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            Settings().validate()

    @patch.dict(os.environ, {"INSIGHTS_PROVIDER": "ollama"}, clear=True)
    def test_ollama_needs_no_key(self):
        Settings().validate()

    @patch.dict(os.environ, {"INSIGHTS_PROVIDER": "ollama", "MAX_ATTEMPTS": "0"}, clear=True)
    def test_invalid_attempts(self):
        with pytest.raises(ValueError, match="MAX_ATTEMPTS"):
            Settings().validate()

    @patch.dict(os.environ, {"INSIGHTS_PROVIDER": "bard"}, clear=True)
    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="INSIGHTS_PROVIDER"):
            Settings().validate()


class TestWiring:
    @patch.dict(os.environ, {"INSIGHTS_PROVIDER": "ollama", "CACHE_MAX_ENTRIES": "7", "MAX_ATTEMPTS": "4"}, clear=True)
    def test_build_orchestrator(self):
        orchestrator = build_orchestrator(Settings())
        assert isinstance(orchestrator.provider, OllamaProvider)
        assert orchestrator.cache.max_entries == 7
        assert orchestrator.retry.max_attempts == 4
        assert orchestrator.deadline == 60.0

    def test_build_preference_store(self, tmp_path):
        with patch.dict(os.environ, {"PREFERENCES_DB_PATH": str(tmp_path / "p.db")}):
            store = build_preference_store(Settings())
        assert store.save(store.load()) is True
        assert (tmp_path / "p.db").exists()


class TestLoopRunner:
    def test_submit_and_call(self):
        runner = LoopRunner()
        try:
            async def double(x):
                return x * 2

            assert runner.submit(double(21)).result(timeout=5) == 42
            assert runner.call(len, [1, 2, 3]) == 3
        finally:
            runner.stop()
