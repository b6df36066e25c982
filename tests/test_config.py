import logging

import pytest

from config import BACKEND_MEMORY, AppConfig


class TestFromEnv:
    def test_numeric_settings(self, monkeypatch):
        monkeypatch.setenv("BACKEND_TIMEOUT", "2.5")
        monkeypatch.setenv("SETTINGS_CACHE_TTL", "0")
        monkeypatch.delenv("PROJECTS_CACHE_TTL", raising=False)
        config = AppConfig.from_env()
        assert config.request_timeout == 2.5
        assert config.settings_ttl == 0.0
        assert config.projects_ttl == 30.0

    @pytest.mark.parametrize("raw", ["abc", "ten", "nan", "inf", "-5", "1e999"])
    def test_malformed_number_falls_back(self, monkeypatch, caplog, raw):
        monkeypatch.setenv("BACKEND_TIMEOUT", raw)
        monkeypatch.setenv("PROJECTS_CACHE_TTL", raw)
        with caplog.at_level(logging.WARNING, logger="portfolio.config"):
            config = AppConfig.from_env()
        assert config.request_timeout == 10.0
        assert config.projects_ttl == 30.0
        assert "BACKEND_TIMEOUT" in caplog.text
        assert "PROJECTS_CACHE_TTL" in caplog.text

    def test_blank_number_uses_default_quietly(self, monkeypatch, caplog):
        monkeypatch.setenv("SETTINGS_CACHE_TTL", "  ")
        with caplog.at_level(logging.WARNING, logger="portfolio.config"):
            assert AppConfig.from_env().settings_ttl == 60.0
        assert caplog.text == ""

    def test_backend_mode(self, monkeypatch):
        monkeypatch.setenv("PORTFOLIO_BACKEND", " Memory ")
        config = AppConfig.from_env()
        assert config.backend_mode == BACKEND_MEMORY
        assert config.env_ready
