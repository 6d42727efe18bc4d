"""Application configuration loaded from environment. No API keys are hardcoded."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from project root (parent of codemapper) so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

GOOGLE_PROVIDER = "google"
OPENAI_PROVIDER = "openai"
DEFAULT_GOOGLE_MODEL = "gemini-2.5-flash"
DEFAULT_OPENAI_MODEL = "llama3"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved provider selection handed to the LLM client (one per batch call)."""

    provider: str
    model_name: str
    api_key: str = field(default="", repr=False)
    base_url: str = DEFAULT_OPENAI_BASE_URL
    timeout: float = 120.0
    temperature: float = 0.2


class Settings(BaseSettings):
    """Settings loaded from environment variables. Sensitive fields use SecretStr (no leak in logs)."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM provider: "google" (Gemini SDK) or "openai" (any OpenAI-compatible endpoint, incl. local servers).
    LLM_PROVIDER: str = GOOGLE_PROVIDER
    # Required for google; optional for local OpenAI-compatible endpoints.
    API_KEY: SecretStr = SecretStr("")
    # Empty = provider default (gemini-2.5-flash / llama3).
    MODEL_NAME: str = ""
    # Empty = https://api.openai.com/v1. Ignored by the google provider.
    OPENAI_BASE_URL: str = ""
    LLM_TIMEOUT_SECONDS: float = 120.0
    LLM_TEMPERATURE: float = 0.2

    # Batching: max files per batch, max cumulative KB per batch, per-file ceiling (larger files are skipped).
    BATCH_COUNT: int = Field(default=5, ge=1)
    BATCH_SIZE_KB: int = Field(default=50, ge=1)
    MAX_FILE_SIZE_KB: int = Field(default=100, ge=1)
    # Each file's text is cut to this many characters before it goes into the prompt.
    MAX_FILE_CONTENT_CHARS: int = Field(default=20_000, ge=1)

    # Scanning: extension allow-list and directory names never descended into.
    SUPPORTED_EXTENSIONS: list[str] = [".js", ".jsx", ".ts", ".tsx", ".py", ".php", ".go", ".java"]
    IGNORED_DIRS: list[str] = [
        "node_modules", ".git", "dist", "build", "vendor", "__pycache__", ".idea", ".vscode",
    ]

    # Persistence: snapshot and Overview output, relative paths resolve against the working directory.
    STATE_FILE: str = "codemapper_state.json"
    OUTPUT_FILE: str = "diagram.mmd"
    # Number of trailing log entries kept in a snapshot.
    SNAPSHOT_LOG_TAIL: int = Field(default=50, ge=0)

    # Paths: audit log and DLQ (append-only files). Defaults = project root when not set in env.
    AUDIT_LOG_PATH: str = ""
    DLQ_PATH: str = ""
    # Logging: set LOG_FORMAT=json for JSON structured logs.
    LOG_FORMAT: str = ""

    @model_validator(mode="after")
    def _set_default_paths(self) -> "Settings":
        """When AUDIT_LOG_PATH or DLQ_PATH are empty, use project root paths."""
        if not (self.AUDIT_LOG_PATH or "").strip():
            object.__setattr__(self, "AUDIT_LOG_PATH", str(_PROJECT_ROOT / "AUDIT.jsonl"))
        if not (self.DLQ_PATH or "").strip():
            object.__setattr__(self, "DLQ_PATH", str(_PROJECT_ROOT / "DLQ.jsonl"))
        return self

    @property
    def provider(self) -> str:
        return (self.LLM_PROVIDER or "").strip().lower() or GOOGLE_PROVIDER

    @property
    def batch_size_bytes(self) -> int:
        return self.BATCH_SIZE_KB * 1024

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_KB * 1024

    def provider_config(self) -> ProviderConfig:
        """Build the ProviderConfig for the LLM client, filling provider-specific defaults."""
        provider = self.provider
        default_model = DEFAULT_GOOGLE_MODEL if provider == GOOGLE_PROVIDER else DEFAULT_OPENAI_MODEL
        return ProviderConfig(
            provider=provider,
            model_name=(self.MODEL_NAME or "").strip() or default_model,
            api_key=(self.API_KEY.get_secret_value() or "").strip(),
            base_url=(self.OPENAI_BASE_URL or "").strip() or DEFAULT_OPENAI_BASE_URL,
            timeout=self.LLM_TIMEOUT_SECONDS,
            temperature=self.LLM_TEMPERATURE,
        )

    def missing_credential(self) -> str | None:
        """Return a diagnostic when the selected provider needs an API key that is not set."""
        if self.provider == GOOGLE_PROVIDER and not (self.API_KEY.get_secret_value() or "").strip():
            return "API_KEY is not set (required for the google provider). Set it in the environment or .env."
        return None


def get_settings() -> Settings:
    """Return application settings (env-based)."""
    return Settings()


def get_env_file_path() -> Path:
    """Return path to .env file used for loading (for logging)."""
    return _ENV_FILE
