"""Tests for environment configuration."""

import pytest

from config import Config


class TestLoad:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "key")
        monkeypatch.setenv("LANGUAGE", "EN")
        monkeypatch.setenv("GENERATION_THRESHOLD", "0.75")
        monkeypatch.setenv("FETCH_CONCURRENCY", "8")
        monkeypatch.setenv("ENABLE_LOGFIRE", "yes")

        config = Config.load()

        assert config.gemini_api_key == "key"
        assert config.language == "en"
        assert config.generation_threshold == 0.75
        assert config.fetch_concurrency == 8
        assert config.enable_logfire is True

    def test_invalid_integer_is_reported(self, monkeypatch):
        monkeypatch.setenv("FETCH_CONCURRENCY", "many")

        with pytest.raises(ValueError, match="FETCH_CONCURRENCY"):
            Config.load()


class TestValidate:
    def test_defaults_with_key_are_valid(self):
        assert Config(gemini_api_key="key").validate() is None

    def test_missing_key(self):
        assert "GEMINI_API_KEY" in Config().validate()
        assert Config().validate(require_api_key=False) is None

    @pytest.mark.parametrize(
        "overrides, expected",
        [
            ({"language": "de"}, "LANGUAGE"),
            ({"generation_threshold": 1.5}, "GENERATION_THRESHOLD"),
            ({"fetch_concurrency": 0}, "FETCH_CONCURRENCY"),
            ({"log_level": "LOUD"}, "LOG_LEVEL"),
            ({"log_format": "xml"}, "LOG_FORMAT"),
        ],
    )
    def test_invalid_values(self, overrides, expected):
        error = Config(gemini_api_key="key", **overrides).validate()

        assert error is not None and expected in error
