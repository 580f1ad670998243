"""Runtime settings read from environment variables (.env supported).

    DATA_DIR              data directory (default ./data)
    LLM_PROVIDER_URL      backend base URL (default http://localhost:5001)
    LLM_API_KEY           bearer token, empty if not required
    LLM_PROVIDER_FORMAT   koboldcpp | openai | openai_chat
    LLM_MODEL             model name for the openai formats
    LLM_TIMEOUT           HTTP timeout in seconds
    LLM_MAX_ATTEMPTS      attempts per LLM call for transient failures
    LLM_BACKOFF_SECONDS   first retry delay, doubled on each retry
    MOCK_LLM              true to use the deterministic mock provider
    RATE_LIMITS_ENABLED   false to disable the in-process rate limiter
    LOG_LEVEL             DEBUG, INFO, WARNING, ...
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from daggergm.cache import ResponseCache
from daggergm.errors import ValidationError
from daggergm.llm import HttpLLM, ProviderFormat
from daggergm.provider import AdventureProvider, LLMAdventureProvider, MockAdventureProvider
from daggergm.storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path("data")

_TRUE = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    llm_provider_url: str = "http://localhost:5001"
    llm_api_key: str = ""
    llm_provider_format: ProviderFormat = "koboldcpp"
    llm_model: str = ""
    llm_timeout: float = Field(default=120.0, gt=0)
    llm_max_attempts: int = Field(default=3, ge=1, le=10)
    llm_backoff_seconds: float = Field(default=1.0, ge=0)
    mock_llm: bool = False
    rate_limits_enabled: bool = True
    log_level: str = "INFO"

    @field_validator("mock_llm", "rate_limits_enabled", mode="before")
    @classmethod
    def _parse_flag(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() in _TRUE
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from `environ` (defaults to os.environ).

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        values = {
            name: env[name.upper()]
            for name in cls.model_fields
            if env.get(name.upper(), "") != ""
        }
        try:
            return cls.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid configuration: {e}") from e


def build_provider(settings: Settings, storage: Storage) -> AdventureProvider:
    """Pick the mock provider or an HTTP-backed provider with a response cache."""
    if settings.mock_llm:
        logger.info("using deterministic mock LLM provider")
        return MockAdventureProvider()
    if not settings.llm_provider_url:
        raise ValidationError("LLM_PROVIDER_URL is not set. Set it, or set MOCK_LLM=true.")

    llm = HttpLLM(
        provider_url=settings.llm_provider_url,
        api_key=settings.llm_api_key,
        provider_format=settings.llm_provider_format,
        model=settings.llm_model,
        timeout=settings.llm_timeout,
    )
    logger.info("using %s backend at %s", settings.llm_provider_format, settings.llm_provider_url)
    return LLMAdventureProvider(
        llm,
        cache=ResponseCache(storage.cache_dir),
        max_attempts=settings.llm_max_attempts,
        backoff_seconds=settings.llm_backoff_seconds,
    )
