"""Unit tests for application settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import DEFAULT_GATE_SECRET, Settings, get_settings


class TestSettings:
    """Defaults and validators."""

    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.LLM_API_ENDPOINT == "http://localhost:3000/api/studio/ai"
        assert settings.LLM_REQUEST_TIMEOUT_SECONDS == 60.0
        assert settings.GATE_MAX_ACTION_AGE_MS == 5000
        assert settings.GATE_TOKEN_VALIDITY_MS == 30000
        assert settings.GATE_MAX_PROCESSED_CACHE_SIZE == 1000
        assert settings.GATE_SECRET == DEFAULT_GATE_SECRET

    def test_endpoint_must_be_http(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, LLM_API_ENDPOINT="ftp://example.com")  # type: ignore[call-arg]

    def test_endpoint_is_stripped(self) -> None:
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None, LLM_API_ENDPOINT="  https://api.example.com/ai  "
        )
        assert settings.LLM_API_ENDPOINT == "https://api.example.com/ai"

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, LLM_REQUEST_TIMEOUT_SECONDS=0)  # type: ignore[call-arg]

    def test_production_rejects_default_secret(self) -> None:
        with pytest.raises(ValidationError, match="GATE_SECRET"):
            Settings(_env_file=None, ENVIRONMENT="production")  # type: ignore[call-arg]

    def test_production_accepts_custom_secret(self) -> None:
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None, ENVIRONMENT="production", GATE_SECRET="rotated"
        )
        assert settings.GATE_SECRET == "rotated"


class TestGetSettings:
    """Environment selection and caching."""

    def test_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_invalid_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "staging")
        with pytest.raises(ValueError, match="ENVIRONMENT"):
            get_settings()

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GATE_MAX_ACTION_AGE_MS", "1234")
        assert get_settings().GATE_MAX_ACTION_AGE_MS == 1234
