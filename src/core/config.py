"""Application settings for the transform orchestrator."""

import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_GATE_SECRET = "GATE_SECRET"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "StudioOrchestrator"
    ENVIRONMENT: str = "development"  # development | production | test
    LOG_LEVEL: str | None = None

    # Model invocation boundary
    LLM_API_ENDPOINT: str = "http://localhost:3000/api/studio/ai"
    LLM_REQUEST_TIMEOUT_SECONDS: float = 60.0

    # Execution gate
    # The secret only salts a non-cryptographic checksum; it is not a MAC key.
    GATE_SECRET: str = DEFAULT_GATE_SECRET
    GATE_MAX_ACTION_AGE_MS: int = 5000
    GATE_TOKEN_VALIDITY_MS: int = 30000
    GATE_MAX_PROCESSED_CACHE_SIZE: int = 1000

    @field_validator("LLM_API_ENDPOINT")
    @classmethod
    def _validate_endpoint(cls, v: str) -> str:
        """Only absolute http(s) URLs are accepted for the model endpoint."""
        s = v.strip()
        if not s.startswith(("http://", "https://")):
            raise ValueError("LLM_API_ENDPOINT must be an http(s) URL")
        return s

    @field_validator("LLM_REQUEST_TIMEOUT_SECONDS")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("LLM_REQUEST_TIMEOUT_SECONDS must be positive")
        return v

    @model_validator(mode="after")
    def _validate_production_secret(self) -> "Settings":
        """Refuse to run production with the shipped gate secret."""
        if self.ENVIRONMENT == "production" and self.GATE_SECRET == DEFAULT_GATE_SECRET:
            raise ValueError(
                "GATE_SECRET must be set to a non-default value in production"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "development").lower()
    if env not in {"development", "production", "test"}:
        raise ValueError("ENVIRONMENT must be 'development', 'production', or 'test'")

    if env == "production":
        env_file = ".env.prod"
    elif env == "development":
        env_file = ".env.dev"
    else:
        # test environment - no env file needed, use defaults
        env_file = ""

    # The Settings initializer accepts a runtime-only `_env_file` kwarg used by
    # pydantic-settings; mypy's stub doesn't allow this call argument.
    return Settings(_env_file=env_file or None)  # type: ignore[call-arg]
