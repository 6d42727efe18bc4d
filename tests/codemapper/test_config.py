"""Targeted tests for codemapper.config: settings loading, provider defaults, no secret leakage."""

import os
from unittest.mock import patch

from codemapper.config import (
    DEFAULT_GOOGLE_MODEL,
    DEFAULT_OPENAI_BASE_URL,
    DEFAULT_OPENAI_MODEL,
    Settings,
    get_settings,
)


def test_get_settings_returns_settings_instance() -> None:
    """get_settings() returns an instance of Settings."""
    settings = get_settings()
    assert isinstance(settings, Settings), f"Expected Settings instance, got {type(settings)}"


def test_settings_defaults() -> None:
    """Defaults: google provider, 5 files / 50KB per batch, 100KB file ceiling, state and output names."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)
    assert settings.provider == "google"
    assert settings.BATCH_COUNT == 5
    assert settings.batch_size_bytes == 50 * 1024
    assert settings.max_file_size_bytes == 100 * 1024
    assert settings.MAX_FILE_CONTENT_CHARS == 20_000
    assert settings.STATE_FILE == "codemapper_state.json"
    assert settings.OUTPUT_FILE == "diagram.mmd"
    assert ".py" in settings.SUPPORTED_EXTENSIONS and ".go" in settings.SUPPORTED_EXTENSIONS
    assert "node_modules" in settings.IGNORED_DIRS
    assert settings.AUDIT_LOG_PATH.endswith("AUDIT.jsonl")
    assert settings.DLQ_PATH.endswith("DLQ.jsonl")


def test_settings_loads_api_key_from_env() -> None:
    """When API_KEY is set in env, Settings loads it (via get_secret_value)."""
    with patch.dict(os.environ, {"API_KEY": "test-key-123"}, clear=False):
        settings = Settings(_env_file=None)
        assert settings.API_KEY.get_secret_value() == "test-key-123"


def test_settings_repr_does_not_contain_raw_key() -> None:
    """Settings and ProviderConfig repr must not expose the raw API key."""
    with patch.dict(os.environ, {"API_KEY": "secret-key-xyz"}, clear=False):
        settings = Settings(_env_file=None)
        assert "secret-key-xyz" not in repr(settings)
        assert "secret-key-xyz" not in repr(settings.provider_config())


def test_provider_config_google_defaults() -> None:
    settings = Settings(_env_file=None, LLM_PROVIDER="google", API_KEY="k", MODEL_NAME="")
    cfg = settings.provider_config()
    assert cfg.provider == "google"
    assert cfg.model_name == DEFAULT_GOOGLE_MODEL
    assert cfg.api_key == "k"
    assert cfg.temperature == 0.2


def test_provider_config_openai_defaults_and_overrides() -> None:
    """openai provider: llama3 and the public base URL by default; explicit values win."""
    cfg = Settings(_env_file=None, LLM_PROVIDER="OpenAI", MODEL_NAME="", OPENAI_BASE_URL="").provider_config()
    assert cfg.provider == "openai"
    assert cfg.model_name == DEFAULT_OPENAI_MODEL
    assert cfg.base_url == DEFAULT_OPENAI_BASE_URL

    cfg = Settings(
        _env_file=None,
        LLM_PROVIDER="openai",
        MODEL_NAME="qwen2.5-coder",
        OPENAI_BASE_URL="http://localhost:11434/v1",
    ).provider_config()
    assert cfg.model_name == "qwen2.5-coder"
    assert cfg.base_url == "http://localhost:11434/v1"


def test_missing_credential_only_for_google() -> None:
    """API_KEY is required for google; optional for OpenAI-compatible endpoints."""
    google = Settings(_env_file=None, LLM_PROVIDER="google", API_KEY="")
    assert google.missing_credential() is not None
    assert "API_KEY" in google.missing_credential()

    openai = Settings(_env_file=None, LLM_PROVIDER="openai", API_KEY="")
    assert openai.missing_credential() is None

    with_key = Settings(_env_file=None, LLM_PROVIDER="google", API_KEY="k")
    assert with_key.missing_credential() is None


def test_list_settings_read_json_from_env() -> None:
    """List settings are given as JSON in the environment."""
    with patch.dict(os.environ, {"SUPPORTED_EXTENSIONS": '[".rs", ".py"]'}, clear=False):
        settings = Settings(_env_file=None)
    assert settings.SUPPORTED_EXTENSIONS == [".rs", ".py"]
