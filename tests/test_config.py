"""Tests for daggergm.config — env settings and provider selection."""

from pathlib import Path

import pytest

from daggergm.config import Settings, build_provider
from daggergm.errors import ValidationError
from daggergm.provider import LLMAdventureProvider, MockAdventureProvider


def test_defaults_from_empty_env():
    s = Settings.from_env({})
    assert s.llm_provider_format == "koboldcpp"
    assert s.llm_max_attempts == 3
    assert s.llm_backoff_seconds == 1.0
    assert s.mock_llm is False
    assert s.rate_limits_enabled is True


def test_reads_env_values():
    s = Settings.from_env({
        "DATA_DIR": "/tmp/dgm",
        "LLM_PROVIDER_URL": "http://llm:8080",
        "LLM_PROVIDER_FORMAT": "openai_chat",
        "LLM_MAX_ATTEMPTS": "5",
        "MOCK_LLM": "yes",
        "RATE_LIMITS_ENABLED": "false",
        "LOG_LEVEL": "debug",
        "LLM_API_KEY": "",
    })
    assert s.data_dir == Path("/tmp/dgm")
    assert s.llm_provider_format == "openai_chat"
    assert s.llm_max_attempts == 5
    assert s.mock_llm is True
    assert s.rate_limits_enabled is False
    assert s.log_level == "DEBUG"
    assert s.llm_api_key == ""


def test_invalid_env_value():
    with pytest.raises(ValidationError, match="Invalid configuration"):
        Settings.from_env({"LLM_PROVIDER_FORMAT": "gopher"})


def test_build_mock_provider(storage):
    assert isinstance(build_provider(Settings(mock_llm=True), storage), MockAdventureProvider)


def test_build_http_provider(storage):
    provider = build_provider(Settings(llm_provider_url="http://llm:5001"), storage)
    assert isinstance(provider, LLMAdventureProvider)


def test_build_without_url(storage):
    with pytest.raises(ValidationError, match="LLM_PROVIDER_URL"):
        build_provider(Settings(llm_provider_url=""), storage)
